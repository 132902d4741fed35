import pytest
from cryptography.fernet import Fernet

from domain.payment.exceptions import CredentialError
from infrastructure.external.vault import FernetCredentialVault


@pytest.fixture
def vault():
    return FernetCredentialVault(FernetCredentialVault.generate_key())


def test_encrypt_then_decrypt(vault):
    bundle = vault.encrypt({"secretKey": "sk_live_123", "webhook_secret": "whsec"})

    assert "sk_live_123" not in bundle
    assert vault.decrypt(bundle) == {"secretKey": "sk_live_123", "webhook_secret": "whsec"}


def test_bundle_from_another_key_is_rejected(vault):
    other = FernetCredentialVault(Fernet.generate_key())
    with pytest.raises(CredentialError):
        vault.decrypt(other.encrypt({"secretKey": "x"}))


@pytest.mark.parametrize("bundle", [None, "", "not-a-token"])
def test_unusable_bundles(vault, bundle):
    with pytest.raises(CredentialError):
        vault.decrypt(bundle)


def test_non_object_payload_is_rejected():
    key = Fernet.generate_key()
    token = Fernet(key).encrypt(b'["not", "a", "dict"]').decode()
    with pytest.raises(CredentialError):
        FernetCredentialVault(key).decrypt(token)


def test_key_is_required():
    with pytest.raises(CredentialError):
        FernetCredentialVault("")
