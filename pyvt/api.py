"""API client for the vals platform."""

from __future__ import annotations

import logging
import random
import time
from typing import Any
from urllib.parse import quote

import httpx

from .config import config
from .exceptions import (
    VtAPIError,
    VtAuthenticationError,
    VtConfigError,
    VtInvalidResponseError,
    VtNetworkError,
    VtNotFoundError,
    VtPermissionError,
    VtRateLimitError,
    VtServerError,
)
from .models import Blob, QueryResult, User, Val
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_PAGE_LIMIT, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})

# Evaluated remotely to snapshot the environment variables of the account
ENV_EXPRESSION = "Deno.env.toObject()"


class VtClient:
    """Client for the vals REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
    ):
        """Initialize the API client.

        Args:
            api_key: Optional API token (uses config if not provided)
            api_url: Optional API base URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        if not self.api_key:
            raise VtConfigError(
                "API token not configured. "
                "Please set the VALTOWN_TOKEN environment variable."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> VtClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.api_url}/{endpoint.lstrip('/')}"

    def _should_retry(self, exception: Exception, method: str, attempt: int) -> bool:
        """Determine if a request should be retried.

        Rate limited requests were never processed and are always safe to
        retry. Network and server errors are retried only for idempotent
        methods, so a val is never created twice.

        Args:
            exception: The exception that occurred
            method: HTTP method of the request
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(exception, VtRateLimitError):
            return True

        if method.upper() not in IDEMPOTENT_METHODS:
            return False

        return isinstance(exception, (VtNetworkError, VtServerError))

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # +/- 25% jitter
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _error_from_status(self, e: httpx.HTTPStatusError) -> VtAPIError:
        """Map an HTTP error to a pyvt exception.

        Args:
            e: The HTTP error exception

        Returns:
            Exception to raise
        """
        status_code = e.response.status_code

        detail = ""
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    detail = (
                        error_data.get("message")
                        or error_data.get("error")
                        or error_data.get("detail")
                        or ""
                    )
        except ValueError:
            detail = e.response.text.strip()

        if status_code == 401:
            return VtAuthenticationError("Invalid API token or unauthorized access")
        elif status_code == 403:
            return VtPermissionError("Access forbidden - check your permissions")
        elif status_code == 404:
            return VtNotFoundError("Resource not found")
        elif status_code == 429:
            return VtRateLimitError("Rate limit exceeded - please try again later")

        error_msg = f"API request failed with status {status_code}"
        if detail:
            error_msg = f"{error_msg}: {detail}"
        if 500 <= status_code < 600:
            return VtServerError(error_msg)
        return VtAPIError(error_msg)

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a request with retry logic and return the successful response.

        Args:
            method: HTTP method
            endpoint: API endpoint path or absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response with a 2xx status

        Raises:
            VtAPIError: If the request fails after all retries
        """
        url = self._url(endpoint)
        client = self._get_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"{method} {url}")
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error = self._error_from_status(e)
                last_exception = error
                if self._should_retry(error, method, attempt):
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"Retrying {method} {url} in {delay:.1f}s: {error}")
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = VtNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, method, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"Retrying {method} {url} in {delay:.1f}s: {error}")
                    time.sleep(delay)
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise VtAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request and decode the JSON body.

        Returns:
            Decoded JSON, the text body for non-JSON responses, or None when
            the body is empty

        Raises:
            VtInvalidResponseError: If a JSON response cannot be decoded
        """
        response = self._send(method, endpoint, **kwargs)
        if not response.content:
            return None

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return response.text

        try:
            return response.json()
        except ValueError as e:
            raise VtInvalidResponseError("Invalid JSON response from server") from e

    def paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> list[Any]:
        """Fetch every page of a listing endpoint.

        Pages are ``{"data": [...], "links": {"next": url}}`` objects. The
        loop follows ``links.next`` until it is absent and returns the
        concatenated items.

        Args:
            endpoint: Listing endpoint
            params: Extra query parameters for the first page
            limit: Page size

        Returns:
            All items across all pages
        """
        items: list[Any] = []
        next_url: str | None = endpoint
        next_params: dict[str, Any] | None = {**(params or {}), "limit": limit}

        while next_url:
            page = self._request("GET", next_url, params=next_params)
            if not isinstance(page, dict) or not isinstance(page.get("data"), list):
                raise VtInvalidResponseError(
                    f"Expected a paginated object from {endpoint}"
                )
            items.extend(page["data"])
            next_url = (page.get("links") or {}).get("next")
            # The next link carries its own query string
            next_params = None

        logger.debug(f"Fetched {len(items)} item(s) from {endpoint}")
        return items

    def request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        content: str | bytes | None = None,
    ) -> httpx.Response:
        """Make a raw authenticated request (used by ``vt api``).

        Args:
            method: HTTP method
            path: API path or absolute URL
            headers: Extra request headers
            content: Request body

        Returns:
            The successful response
        """
        return self._send(method.upper(), path, headers=headers, content=content)

    # =========================
    # Users
    # =========================

    def get_current_user(self) -> User:
        """Get the user owning the API token."""
        return User.from_api_response(self._request("GET", "/v1/me"))

    def get_user_by_alias(self, username: str) -> User:
        """Look up a user by username."""
        endpoint = f"/v1/alias/{quote(username, safe='')}"
        return User.from_api_response(self._request("GET", endpoint))

    # =========================
    # Vals
    # =========================

    def get_val(self, val_id: str) -> Val:
        """Get a val, including its current code."""
        data = self._request("GET", f"/v1/vals/{val_id}")
        return Val.from_api_response(data, require_code=True)

    def get_val_by_alias(self, author: str, name: str) -> Val:
        """Get a val by author and name."""
        endpoint = f"/v1/alias/{quote(author, safe='')}/{quote(name, safe='')}"
        return Val.from_api_response(self._request("GET", endpoint))

    def list_user_vals(self, user_id: str, limit: int = DEFAULT_PAGE_LIMIT) -> list[Val]:
        """List every val of a user, draining all pages.

        Args:
            user_id: ID of the user
            limit: Page size

        Returns:
            List of vals with their code
        """
        items = self.paginate(f"/v1/users/{user_id}/vals", limit=limit)
        return [Val.from_api_response(item, require_code=True) for item in items]

    def list_user_vals_page(self, user_id: str, limit: int = 10) -> list[Val]:
        """List the first ``limit`` vals of a user."""
        data = self._request(
            "GET", f"/v1/users/{user_id}/vals", params={"limit": limit}
        )
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise VtInvalidResponseError("invalid response")
        return [Val.from_api_response(item) for item in data["data"]]

    def search_vals(self, query: str, limit: int = 10) -> list[Val]:
        """Search public vals."""
        data = self._request(
            "GET", "/v1/search/vals", params={"query": query, "limit": limit}
        )
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise VtInvalidResponseError("invalid response")
        return [Val.from_api_response(item) for item in data["data"]]

    def create_val(
        self,
        name: str | None,
        code: str,
        privacy: str | None = None,
        readme: str | None = None,
    ) -> Val:
        """Create a new val.

        Args:
            name: Name of the val (the server picks one when None)
            code: Source code
            privacy: "public", "unlisted" or "private"
            readme: Readme markdown

        Returns:
            The created val
        """
        payload: dict[str, Any] = {"code": code}
        if name:
            payload["name"] = name
        if privacy:
            payload["privacy"] = privacy
        if readme is not None:
            payload["readme"] = readme
        return Val.from_api_response(self._request("POST", "/v1/vals", json=payload))

    def create_version(self, val_id: str, code: str) -> Any:
        """Push new code as the next version of a val."""
        return self._request("POST", f"/v1/vals/{val_id}/versions", json={"code": code})

    def update_val(
        self,
        val_id: str,
        name: str | None = None,
        privacy: str | None = None,
        readme: str | None = None,
    ) -> Any:
        """Update val metadata (name, privacy or readme)."""
        payload: dict[str, Any] = {}
        if name:
            payload["name"] = name
        if privacy:
            payload["privacy"] = privacy
        if readme is not None:
            payload["readme"] = readme
        return self._request("PUT", f"/v1/vals/{val_id}", json=payload)

    def delete_val(self, val_id: str) -> None:
        """Delete a val."""
        self._request("DELETE", f"/v1/vals/{val_id}")

    # =========================
    # Eval
    # =========================

    def evaluate(self, code: str, args: list[Any] | None = None) -> Any:
        """Evaluate an expression remotely and return its JSON value."""
        payload: dict[str, Any] = {"code": code}
        if args is not None:
            payload["args"] = args
        return self._request("POST", "/v1/eval", json=payload)

    def get_env(self) -> dict[str, str]:
        """Fetch the remote environment variables.

        Returns:
            Flat mapping of variable names to string values
        """
        data = self.evaluate(ENV_EXPRESSION)
        if not isinstance(data, dict):
            raise VtInvalidResponseError("Environment snapshot is not an object")
        return {str(key): str(value) for key, value in data.items()}

    # =========================
    # Blobs
    # =========================

    def list_blobs(self, prefix: str | None = None) -> list[Blob]:
        """List blobs, optionally filtered by key prefix."""
        params = {"prefix": prefix} if prefix else None
        data = self._request("GET", "/v1/blob", params=params)
        if not isinstance(data, list):
            raise VtInvalidResponseError("Expected a list of blobs")
        return [Blob.from_api_response(item) for item in data]

    def download_blob(self, key: str) -> bytes:
        """Download a blob's content."""
        return self._send("GET", f"/v1/blob/{quote(key, safe='')}").content

    def upload_blob(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any existing blob."""
        self._send("POST", f"/v1/blob/{quote(key, safe='')}", content=data)

    def delete_blob(self, key: str) -> None:
        """Delete a blob."""
        self._send("DELETE", f"/v1/blob/{quote(key, safe='')}")

    # =========================
    # SQLite
    # =========================

    def execute_sql(self, statement: str) -> QueryResult:
        """Execute a single SQL statement."""
        data = self._request(
            "POST", "/v1/sqlite/execute", json={"statement": statement}
        )
        return QueryResult.from_api_response(data)

    def batch_sql(self, statements: list[str]) -> Any:
        """Execute statements in a single transaction."""
        return self._request(
            "POST", "/v1/sqlite/batch", json={"statements": statements}
        )
