"""Keychain storage for the price-feed API key.

Wraps ``keyring`` so config can read secrets from the system keychain
(macOS Keychain, Secret Service, Windows Credential Locker) before
falling back to environment variables. Lookups never raise: a missing or
locked backend reads as "not stored".
"""

import logging

import keyring

logger = logging.getLogger(__name__)

SERVICE_NAME = "snapshot-refresh"

# Settings fields that may live in the keychain instead of .env
CREDENTIAL_KEYS: frozenset[str] = frozenset({"COINGECKO_API_KEY"})


def get_credential(key: str) -> str | None:
    """Return the stored value for ``key``, or None."""
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store ``value`` under ``key`` in the keychain.

    Args:
        key: One of ``CREDENTIAL_KEYS``; anything else is refused.
        value: Non-blank secret.

    Returns:
        True when the keychain accepted the value.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store unknown credential %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store blank value for %s", key)
        return False

    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain rejected %s", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True
