"""Access-token lookup for provider calls.

inboxmap never runs OAuth flows or refreshes tokens: an upstream component
owns that and hands over a valid bearer token. This module is the seam where
that token is obtained for a (user, provider) pair.

Usage:
    from inboxmap.auth import EnvCredentialProvider

    credentials = EnvCredentialProvider()
    token = credentials.get_access_token("user-1", "gmail")
"""

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping

from inboxmap.core.errors import AuthRequired
from inboxmap.core.logging import get_logger
from inboxmap.taxonomy.models import Provider

logger = get_logger(__name__)

ENV_VAR_TEMPLATE = "INBOXMAP_{provider}_TOKEN"


class CredentialProvider(ABC):
    """Supplies a bearer access token per (user, provider)."""

    @abstractmethod
    def find_access_token(self, user_id: str, provider: Provider) -> str | None:
        """Return the token, or None if the user has not connected this provider."""

    def get_access_token(self, user_id: str, provider: Provider | str) -> str:
        """Return the token for a user's mailbox.

        Raises:
            AuthRequired: If no token is available
        """
        provider = Provider(provider)
        token = self.find_access_token(user_id, provider)
        if not token:
            logger.info("access_token_missing", user_id=user_id, provider=provider.value)
            raise AuthRequired(
                f"No {provider.value} credential for user {user_id}. "
                "Connect the mailbox through the OAuth flow, then retry.",
                provider=provider.value,
            )
        return token


class StaticCredentialProvider(CredentialProvider):
    """Tokens held in memory, keyed by (user_id, provider). Used by tests and scripts."""

    def __init__(self, tokens: Mapping[tuple[str, Provider | str], str] | None = None):
        self._tokens: dict[tuple[str, Provider], str] = {
            (user_id, Provider(provider)): token
            for (user_id, provider), token in (tokens or {}).items()
        }

    def set_token(self, user_id: str, provider: Provider | str, token: str) -> None:
        self._tokens[(user_id, Provider(provider))] = token

    def find_access_token(self, user_id: str, provider: Provider) -> str | None:
        return self._tokens.get((user_id, provider))


class EnvCredentialProvider(CredentialProvider):
    """One token per provider from INBOXMAP_GMAIL_TOKEN / INBOXMAP_O365_TOKEN.

    Meant for single-mailbox CLI use: the same token serves every user id.
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def find_access_token(self, user_id: str, provider: Provider) -> str | None:
        return self._environ.get(ENV_VAR_TEMPLATE.format(provider=provider.value.upper()))
