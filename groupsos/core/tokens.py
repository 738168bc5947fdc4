"""Invite-token generation for groups."""

from __future__ import annotations

import secrets

TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
TOKEN_LENGTH = 8


def generate_group_token(length: int = TOKEN_LENGTH) -> str:
    """
    Return a short, human-transcribable invite code.

    36**8 ≈ 2.8e12 combinations drawn from the OS CSPRNG; uniqueness is
    still enforced by the store, which retries on collision.
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def is_well_formed_token(token: str) -> bool:
    return len(token) == TOKEN_LENGTH and all(c in TOKEN_ALPHABET for c in token)
