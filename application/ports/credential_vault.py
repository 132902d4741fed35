"""
Credential vault port: turns stored gateway credential bundles into dicts.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CredentialVault(Protocol):

    def encrypt(self, credentials: dict[str, Any]) -> str: ...

    def decrypt(self, bundle: str) -> dict[str, Any]: ...
