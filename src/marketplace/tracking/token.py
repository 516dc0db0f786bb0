"""Opaque, URL-safe tracking tokens shared by every order of a checkout."""

import secrets

TRACKING_TOKEN_LENGTH = 32


def new_tracking_token() -> str:
    # 24 random bytes encode to exactly 32 URL-safe characters
    return secrets.token_urlsafe(24)
