"""
Masking helpers for personal data that ends up in storage or logs.
"""
from __future__ import annotations

import re
from typing import Optional


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def mask_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return email
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}***@{domain}"


def mask_document(document: Optional[str]) -> Optional[str]:
    """CPF 12345678901 -> 123.***.***-01; CNPJ keeps the same ends."""
    if not document:
        return document
    digits = only_digits(document)
    if len(digits) == 11:
        return f"{digits[:3]}.***.***-{digits[-2:]}"
    if len(digits) == 14:
        return f"{digits[:2]}.***.***/****-{digits[-2:]}"
    return "*" * len(digits)


def mask_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return phone
    digits = only_digits(phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]
