"""
Fernet-backed credential vault for gateway configurations.

Bundles are url-safe base64 Fernet tokens wrapping a JSON object.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from core.logging_config import get_logger
from domain.payment.exceptions import CredentialError


logger = get_logger(__name__)


class FernetCredentialVault:

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise CredentialError("Credential vault key is not configured")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, credentials: dict[str, Any]) -> str:
        raw = json.dumps(credentials, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return self._fernet.encrypt(raw).decode("ascii")

    def decrypt(self, bundle: Optional[str]) -> dict[str, Any]:
        if not bundle:
            raise CredentialError("Gateway has no stored credentials")
        try:
            raw = self._fernet.decrypt(bundle.encode("ascii"))
        except InvalidToken as exc:
            logger.warning("credential_bundle_undecryptable")
            raise CredentialError("Stored credentials cannot be decrypted") from exc
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise CredentialError("Stored credentials are not valid JSON") from exc
        if not isinstance(data, dict):
            raise CredentialError("Stored credentials must be an object")
        return data
