"""Idempotency keys for the Boost journal.

A key is unique per balance, i.e. per (user, competition). Reusing a key on
the same balance turns the operation into a no-op; the same key on another
balance is unrelated.

Retried jobs should derive keys from the stable inputs of the business
action (``derive_idempotency_key``); one-off calls may take a random key
(``new_idempotency_key``), which gives up replay protection.
"""

from __future__ import annotations

import secrets

RANDOM_KEY_BYTES = 32


def new_idempotency_key() -> bytes:
    """Random key. Two calls never collide."""
    return secrets.token_bytes(RANDOM_KEY_BYTES)


def derive_idempotency_key(**parts: object) -> bytes:
    """Deterministic key built from ``name=value`` pairs, e.g. ``competition=...|stake=...``.

    Pairs keep the caller's order so the key stays readable in the journal.
    """
    if not parts:
        msg = "at least one key part is required"
        raise ValueError(msg)
    return "|".join(f"{name}={value}" for name, value in parts.items()).encode()


def coerce_idempotency_key(key: bytes | str | None) -> bytes:
    """Normalize a caller-supplied key, generating one when absent."""
    if key is None:
        return new_idempotency_key()
    if isinstance(key, str):
        key = key.encode()
    if not key:
        msg = "idempotency key must not be empty"
        raise ValueError(msg)
    return bytes(key)


def key_fingerprint(key: bytes) -> str:
    """Short hex prefix of a key for log lines."""
    return key[:8].hex()
