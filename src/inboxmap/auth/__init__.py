"""Credential providers supplying provider access tokens."""

from inboxmap.auth.credentials import (
    CredentialProvider,
    EnvCredentialProvider,
    StaticCredentialProvider,
)

__all__ = ["CredentialProvider", "EnvCredentialProvider", "StaticCredentialProvider"]
