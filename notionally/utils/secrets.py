"""Unwrapping and masking of API keys and tokens."""

from __future__ import annotations

from pydantic import SecretStr

NOT_CONFIGURED = "Not configured"


def secret_value(value: SecretStr | str | None) -> str | None:
    """Plaintext of ``value`` with whitespace trimmed; blank secrets count as missing."""
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    return (value or "").strip() or None


def mask_secret(value: SecretStr | str | None) -> str:
    """``abcd****wxyz`` for long secrets, ``****`` for short ones."""
    plain = secret_value(value)
    if plain is None:
        return NOT_CONFIGURED
    return "****" if len(plain) <= 8 else f"{plain[:4]}****{plain[-4:]}"
