"""HTTP transport for the Gmail and Microsoft Graph REST APIs.

Both providers speak JSON over HTTPS with bearer tokens, so one client class
serves both; each adapter owns an instance bound to its base URL. The access
token is passed per request because one client serves many users.

The engine itself never retries. The transport retries 5xx, 429 and network
failures only when configured with max_retries > 0 (default 0).

Usage:
    from inboxmap.providers.client import ProviderHTTPClient

    client = ProviderHTTPClient("gmail", "https://gmail.googleapis.com")
    labels = client.get("/gmail/v1/users/me/labels", token=access_token)
"""

import random
import time
from typing import Any

import requests

from inboxmap.core.errors import AuthRequired, ExternalServiceError, RateLimitExceeded
from inboxmap.core.logging import get_logger

logger = get_logger(__name__)

GMAIL_BASE_URL = "https://gmail.googleapis.com"
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]

# Safety limit for @odata.nextLink chains
MAX_PAGES = 100

# Network failures worth another attempt; other RequestExceptions fail at once
TRANSIENT_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
)


class ProviderHTTPClient:
    """JSON REST client with bearer auth, error mapping and optional retries.

    Attributes:
        provider: Provider name used in errors and logs ("gmail" or "o365")
        base_url: API root, without trailing slash
        timeout: Per-request timeout in seconds
        max_retries: Retry attempts for transient failures (0 disables retries)
        retry_delays: Backoff delays in seconds for each retry

    Example:
        client = ProviderHTTPClient("o365", GRAPH_BASE_URL)

        folders = client.paginate("/me/mailFolders", token=token)
        folder = client.post(
            "/me/mailFolders",
            json={"displayName": "SALES"},
            token=token,
        )
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        session: requests.Session | None = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS

        # Session for connection pooling
        self.session = session or requests.Session()

        logger.debug(
            "ProviderHTTPClient initialized",
            provider=provider,
            base_url=self.base_url,
            max_retries=max_retries,
        )

    def _get_headers(self, token: str | None) -> dict[str, str]:
        if not token:
            raise AuthRequired(
                f"No access token available for {self.provider}. "
                "Connect the mailbox before running discovery or provisioning.",
                provider=self.provider,
            )
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _make_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint  # Already a full URL (e.g., @odata.nextLink)
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    def _handle_error_response(
        self, response: requests.Response, method: str, endpoint: str
    ) -> None:
        """Translate a non-2xx response into an inboxmap exception.

        Gmail reports {"error": {"code": 409, "status": "ALREADY_EXISTS", ...}},
        Graph reports {"error": {"code": "ErrorFolderExists", ...}}.

        Raises:
            AuthRequired: For 401
            RateLimitExceeded: For 429
            ExternalServiceError: For every other status
        """
        try:
            error_info = response.json().get("error", {})
            if not isinstance(error_info, dict):
                error_info = {"message": str(error_info)}
            error_code = str(error_info.get("status") or error_info.get("code") or "unknown")
            error_message = error_info.get("message") or response.text
        except ValueError:
            error_code = "unknown"
            error_message = response.text or f"HTTP {response.status_code}"

        logger.error(
            "Provider API error",
            provider=self.provider,
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message[:200],
        )

        if response.status_code == 401:
            raise AuthRequired(
                f"{self.provider} rejected the access token (401): {error_message}. "
                "The token may have expired; reconnect the mailbox.",
                provider=self.provider,
            )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceeded(
                f"{self.provider} rate limit exceeded (429). "
                f"Retry after: {retry_after or 'unknown'} seconds.",
                provider=self.provider,
                retry_after=retry_after,
            )
        if response.status_code == 403:
            message = (
                f"Permission denied by {self.provider} (403): {error_message}. "
                "Check that the token was granted label/folder management scopes."
            )
        else:
            message = f"{self.provider} API error ({response.status_code}): {error_message}"
        raise ExternalServiceError(
            message,
            provider=self.provider,
            status_code=response.status_code,
            error_code=error_code,
            body=response.text[:1000] if response.text else None,
        )

    def _parse_json(
        self, response: requests.Response, method: str, endpoint: str
    ) -> dict[str, Any]:
        """Decode a 2xx body, which proxies sometimes replace with HTML."""
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "Provider API returned a non-JSON body",
                provider=self.provider,
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
                content_type=response.headers.get("Content-Type"),
            )
            raise ExternalServiceError(
                f"{self.provider} returned an unreadable response "
                f"({response.status_code}) for {method} {endpoint}",
                provider=self.provider,
                status_code=response.status_code,
                error_code="invalid_response",
                body=response.text[:1000] if response.text else None,
            ) from e

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return response.status_code == 429 or 500 <= response.status_code < 600

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Delay before the next attempt, with ±20% jitter.

        A 429 Retry-After header takes precedence over the backoff schedule.
        """
        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                except ValueError:
                    pass
        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return base_delay + jitter

    def request(
        self,
        method: str,
        endpoint: str,
        token: str | None,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request, retrying transient failures when configured.

        Args:
            method: HTTP method (GET, POST)
            endpoint: Path relative to base_url, or an absolute URL
            token: Bearer access token for the user
            params: URL query parameters
            json: JSON request body

        Returns:
            Parsed JSON response ({} for 204 No Content)

        Raises:
            AuthRequired: Missing token or 401
            RateLimitExceeded: 429 after retries are exhausted
            ExternalServiceError: Any other failure
        """
        url = self._make_url(endpoint)
        headers = self._get_headers(token)

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(
                    "Provider API request",
                    provider=self.provider,
                    method=method,
                    endpoint=endpoint,
                    attempt=attempt + 1,
                )
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                if attempt < self.max_retries and isinstance(e, TRANSIENT_ERRORS):
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "Provider API request failed, retrying",
                        provider=self.provider,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise ExternalServiceError(
                    f"Request to {self.provider} {endpoint} failed: {e}. "
                    "Check network connectivity to the provider API.",
                    provider=self.provider,
                ) from e

            if response.status_code < 400:
                if response.status_code == 204 or not response.content:
                    return {}
                return self._parse_json(response, method, endpoint)

            if self._should_retry(response, attempt):
                delay = self._get_retry_delay(response, attempt)
                logger.warning(
                    "Retrying provider API request",
                    provider=self.provider,
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            self._handle_error_response(response, method, endpoint)

        # Unreachable: the last attempt either returns or raises
        raise ExternalServiceError(
            f"Request to {self.provider} {endpoint} failed after {self.max_retries} retries",
            provider=self.provider,
        )

    def get(
        self, endpoint: str, token: str | None, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make a GET request."""
        return self.request("GET", endpoint, token, params=params)

    def post(
        self,
        endpoint: str,
        token: str | None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a POST request."""
        return self.request("POST", endpoint, token, json=json)

    def paginate(
        self,
        endpoint: str,
        token: str | None,
        params: dict[str, Any] | None = None,
        max_pages: int = MAX_PAGES,
    ) -> list[dict[str, Any]]:
        """Fetch every page of a Graph collection by following @odata.nextLink.

        Args:
            endpoint: Collection endpoint
            token: Bearer access token
            params: Query parameters for the first page (nextLink carries its own)
            max_pages: Stop after this many pages

        Returns:
            The concatenated "value" arrays of all pages
        """
        all_items: list[dict[str, Any]] = []
        next_url: str | None = endpoint
        page_count = 0

        while next_url and page_count < max_pages:
            response = self.get(next_url, token, params=params if page_count == 0 else None)
            all_items.extend(response.get("value", []))
            next_url = response.get("@odata.nextLink")
            page_count += 1

        if next_url:
            logger.warning(
                "Pagination stopped at max_pages",
                provider=self.provider,
                endpoint=endpoint,
                max_pages=max_pages,
                items_collected=len(all_items),
            )

        logger.debug(
            "Pagination complete",
            provider=self.provider,
            endpoint=endpoint,
            total_pages=page_count,
            total_items=len(all_items),
        )
        return all_items
