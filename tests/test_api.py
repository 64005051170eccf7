"""Unit tests for the API client."""

from unittest.mock import patch

import httpx
import pytest

from pyvt.api import ENV_EXPRESSION, VtClient
from pyvt.exceptions import (
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
from pyvt.models import Val


def make_response(status_code=200, method="GET", url="https://api.test/x", **kwargs):
    """Build a real httpx response bound to a request."""
    return httpx.Response(
        status_code, request=httpx.Request(method, url), **kwargs
    )


def val_json(val_id="v1", name="hello", code="export default 1"):
    return {
        "id": val_id,
        "name": name,
        "code": code,
        "version": 3,
        "privacy": "public",
        "author": {"username": "alice"},
    }


@pytest.fixture
def client():
    return VtClient(api_key="test_key", api_url="https://api.test", retry_delay=0)


class TestVtClient:
    """Tests for VtClient initialization and basic functionality."""

    def test_init_with_api_key(self):
        """Test client initialization with API key."""
        client = VtClient(api_key="test_key", api_url="https://api.test/")
        assert client.api_key == "test_key"
        assert client.api_url == "https://api.test"

    def test_init_without_api_key_raises_error(self):
        """Test that initializing without a token raises an error."""
        with patch("pyvt.api.config") as mock_config:
            mock_config.api_key = None
            mock_config.api_url = "https://api.test"
            with pytest.raises(VtConfigError, match="API token not configured"):
                VtClient(api_key=None)

    def test_client_headers_set_correctly(self, client):
        """Test that the httpx client sends the bearer token."""
        http_client = client._get_client()
        assert http_client.headers["Authorization"] == "Bearer test_key"
        client.close()

    def test_context_manager_closes_client(self):
        """Test that leaving the context closes the httpx client."""
        with VtClient(api_key="test_key") as client:
            http_client = client._get_client()
        assert http_client.is_closed
        assert client._client is None

    def test_url_joining(self, client):
        """Test relative and absolute endpoints."""
        assert client._url("/v1/me") == "https://api.test/v1/me"
        assert client._url("v1/me") == "https://api.test/v1/me"
        assert client._url("https://other.test/a") == "https://other.test/a"


class TestAPIRequest:
    """Tests for the _request method."""

    @patch("pyvt.api.httpx.Client.request")
    def test_successful_json_response(self, mock_request, client):
        """Test successful API request with JSON response."""
        mock_request.return_value = make_response(json={"data": "test"})

        assert client._request("GET", "/test") == {"data": "test"}
        mock_request.assert_called_once()
        args, _ = mock_request.call_args
        assert args == ("GET", "https://api.test/test")

    @patch("pyvt.api.httpx.Client.request")
    def test_empty_response(self, mock_request, client):
        """Test handling of empty response."""
        mock_request.return_value = make_response(204)

        assert client._request("DELETE", "/test") is None

    @patch("pyvt.api.httpx.Client.request")
    def test_text_response(self, mock_request, client):
        """Test that non-JSON bodies are returned as text."""
        mock_request.return_value = make_response(text="plain body")

        assert client._request("GET", "/test") == "plain body"

    @patch("pyvt.api.httpx.Client.request")
    def test_invalid_json_response(self, mock_request, client):
        """Test that a broken JSON body raises an error."""
        mock_request.return_value = make_response(
            content=b"{broken", headers={"Content-Type": "application/json"}
        )

        with pytest.raises(VtInvalidResponseError, match="Invalid JSON"):
            client._request("GET", "/test")

    @pytest.mark.parametrize(
        "status_code,error_class,message",
        [
            (401, VtAuthenticationError, "Invalid API token"),
            (403, VtPermissionError, "Access forbidden"),
            (404, VtNotFoundError, "Resource not found"),
        ],
    )
    @patch("pyvt.api.httpx.Client.request")
    def test_http_errors(self, mock_request, status_code, error_class, message, client):
        """Test mapping of HTTP status codes to exceptions."""
        mock_request.return_value = make_response(status_code)

        with pytest.raises(error_class, match=message):
            client._request("GET", "/test")

    @patch("pyvt.api.httpx.Client.request")
    def test_http_error_with_json_error_message(self, mock_request, client):
        """Test that the server's message is included in the error."""
        mock_request.return_value = make_response(
            400, json={"message": "name already taken"}
        )

        with pytest.raises(VtAPIError, match="status 400: name already taken"):
            client._request("POST", "/v1/vals")

    @patch("pyvt.api.httpx.Client.request")
    def test_http_error_with_unparseable_response(self, mock_request, client):
        """Test that a plain text error body is used as detail."""
        mock_request.return_value = make_response(
            400, content=b"bad things", headers={"Content-Type": "application/json"}
        )

        with pytest.raises(VtAPIError, match="bad things"):
            client._request("GET", "/test")


class TestRetries:
    """Tests for retry behaviour."""

    @patch("pyvt.api.time.sleep")
    @patch("pyvt.api.httpx.Client.request")
    def test_get_retried_on_server_error(self, mock_request, mock_sleep, client):
        """Test that an idempotent request is retried after a 5xx."""
        mock_request.side_effect = [
            make_response(503),
            make_response(json={"ok": True}),
        ]

        assert client._request("GET", "/test") == {"ok": True}
        assert mock_request.call_count == 2
        mock_sleep.assert_called_once()

    @patch("pyvt.api.time.sleep")
    @patch("pyvt.api.httpx.Client.request")
    def test_post_not_retried_on_server_error(self, mock_request, mock_sleep, client):
        """Test that a POST is not replayed after a 5xx."""
        mock_request.return_value = make_response(500, method="POST")

        with pytest.raises(VtServerError):
            client._request("POST", "/v1/vals", json={"code": ""})

        assert mock_request.call_count == 1
        mock_sleep.assert_not_called()

    @patch("pyvt.api.time.sleep")
    @patch("pyvt.api.httpx.Client.request")
    def test_post_not_retried_on_network_error(self, mock_request, mock_sleep, client):
        """Test that a POST is not replayed after a network failure."""
        mock_request.side_effect = httpx.ConnectError("refused")

        with pytest.raises(VtNetworkError, match="Network error"):
            client._request("POST", "/v1/vals")

        assert mock_request.call_count == 1

    @patch("pyvt.api.time.sleep")
    @patch("pyvt.api.httpx.Client.request")
    def test_rate_limit_retried_with_retry_after(
        self, mock_request, mock_sleep, client
    ):
        """Test that 429 is retried, honouring Retry-After, even for POST."""
        mock_request.side_effect = [
            make_response(429, method="POST", headers={"Retry-After": "2"}),
            make_response(method="POST", json={"id": "v1"}),
        ]

        assert client._request("POST", "/v1/vals") == {"id": "v1"}
        mock_sleep.assert_called_once_with(2.0)

    @patch("pyvt.api.time.sleep")
    @patch("pyvt.api.httpx.Client.request")
    def test_rate_limit_exhausted(self, mock_request, mock_sleep, client):
        """Test that retries stop after max_retries."""
        mock_request.return_value = make_response(429)

        with pytest.raises(VtRateLimitError):
            client._request("GET", "/test")

        assert mock_request.call_count == client.max_retries + 1

    def test_retry_delay_grows(self):
        """Test exponential backoff with bounded jitter."""
        client = VtClient(api_key="test_key", retry_delay=1.0)
        assert 0.75 <= client._calculate_retry_delay(0) <= 1.25
        assert 3.0 <= client._calculate_retry_delay(2) <= 5.0


class TestPagination:
    """Tests for paginate and list_user_vals."""

    @patch("pyvt.api.httpx.Client.request")
    def test_follows_next_links(self, mock_request, client):
        """Test that every page is fetched until links.next is absent."""
        mock_request.side_effect = [
            make_response(
                json={
                    "data": [val_json("a", "one")],
                    "links": {"next": "https://api.test/v1/users/u1/vals?offset=1"},
                }
            ),
            make_response(json={"data": [val_json("b", "two")], "links": {}}),
        ]

        vals = client.list_user_vals("u1")

        assert [v.name for v in vals] == ["one", "two"]
        first, second = mock_request.call_args_list
        assert first.args[1] == "https://api.test/v1/users/u1/vals"
        assert first.kwargs["params"] == {"limit": 100}
        assert second.args[1] == "https://api.test/v1/users/u1/vals?offset=1"
        assert second.kwargs["params"] is None

    @patch("pyvt.api.httpx.Client.request")
    def test_missing_code_is_invalid(self, mock_request, client):
        """Test that listed vals must carry their code."""
        item = val_json()
        del item["code"]
        mock_request.return_value = make_response(json={"data": [item]})

        with pytest.raises(VtInvalidResponseError, match="code"):
            client.list_user_vals("u1")

    @patch("pyvt.api.httpx.Client.request")
    def test_non_paginated_response(self, mock_request, client):
        """Test that a listing without data raises an error."""
        mock_request.return_value = make_response(json=[1, 2])

        with pytest.raises(VtInvalidResponseError):
            client.paginate("/v1/users/u1/vals")


class TestValEndpoints:
    """Tests for val and user methods."""

    @patch("pyvt.api.VtClient._request")
    def test_get_current_user(self, mock_request, client):
        mock_request.return_value = {"id": "u1", "username": "alice", "bio": None}

        user = client.get_current_user()

        assert (user.id, user.username) == ("u1", "alice")
        mock_request.assert_called_once_with("GET", "/v1/me")

    @patch("pyvt.api.VtClient._request")
    def test_get_val(self, mock_request, client):
        mock_request.return_value = val_json()

        val = client.get_val("v1")

        assert isinstance(val, Val)
        assert val.code == "export default 1"
        assert val.slug == "alice/hello"
        mock_request.assert_called_once_with("GET", "/v1/vals/v1")

    @patch("pyvt.api.VtClient._request")
    def test_get_val_by_alias_quotes_parts(self, mock_request, client):
        mock_request.return_value = val_json()

        client.get_val_by_alias("alice", "hello")

        mock_request.assert_called_once_with("GET", "/v1/alias/alice/hello")

    @patch("pyvt.api.VtClient._request")
    def test_create_val_payload(self, mock_request, client):
        """Test that only given fields are sent on create."""
        mock_request.return_value = val_json()

        client.create_val("hello", "code", privacy="private")

        mock_request.assert_called_once_with(
            "POST",
            "/v1/vals",
            json={"code": "code", "name": "hello", "privacy": "private"},
        )

    @patch("pyvt.api.VtClient._request")
    def test_create_version(self, mock_request, client):
        client.create_version("v1", "new code")

        mock_request.assert_called_once_with(
            "POST", "/v1/vals/v1/versions", json={"code": "new code"}
        )

    @patch("pyvt.api.VtClient._request")
    def test_update_val(self, mock_request, client):
        client.update_val("v1", name="renamed")

        mock_request.assert_called_once_with(
            "PUT", "/v1/vals/v1", json={"name": "renamed"}
        )

    @patch("pyvt.api.VtClient._request")
    def test_delete_val(self, mock_request, client):
        client.delete_val("v1")

        mock_request.assert_called_once_with("DELETE", "/v1/vals/v1")


class TestEnvAndEval:
    """Tests for remote evaluation."""

    @patch("pyvt.api.VtClient._request")
    def test_get_env(self, mock_request, client):
        """Test that the env snapshot is flattened to strings."""
        mock_request.return_value = {"A": "1", "PORT": 8080}

        assert client.get_env() == {"A": "1", "PORT": "8080"}
        mock_request.assert_called_once_with(
            "POST", "/v1/eval", json={"code": ENV_EXPRESSION}
        )

    @patch("pyvt.api.VtClient._request")
    def test_get_env_rejects_non_object(self, mock_request, client):
        mock_request.return_value = ["not", "a", "dict"]

        with pytest.raises(VtInvalidResponseError):
            client.get_env()

    @patch("pyvt.api.VtClient._request")
    def test_evaluate_with_args(self, mock_request, client):
        client.evaluate("(a) => a", args=[1])

        mock_request.assert_called_once_with(
            "POST", "/v1/eval", json={"code": "(a) => a", "args": [1]}
        )


class TestBlobsAndSql:
    """Tests for blob and SQLite methods."""

    @patch("pyvt.api.httpx.Client.request")
    def test_download_blob_quotes_key(self, mock_request, client):
        mock_request.return_value = make_response(content=b"\x00\x01")

        assert client.download_blob("dir/file name") == b"\x00\x01"
        assert mock_request.call_args.args[1] == (
            "https://api.test/v1/blob/dir%2Ffile%20name"
        )

    @patch("pyvt.api.VtClient._request")
    def test_list_blobs(self, mock_request, client):
        mock_request.return_value = [
            {"key": "a.txt", "size": 3, "lastModified": "2024-01-01T00:00:00Z"}
        ]

        blobs = client.list_blobs(prefix="a")

        assert blobs[0].key == "a.txt"
        assert blobs[0].size == 3
        mock_request.assert_called_once_with(
            "GET", "/v1/blob", params={"prefix": "a"}
        )

    @patch("pyvt.api.VtClient._request")
    def test_execute_sql(self, mock_request, client):
        mock_request.return_value = {"columns": ["n"], "rows": [[1]]}

        result = client.execute_sql("select 1 as n")

        assert result.columns == ["n"]
        assert result.rows == [[1]]

    @patch("pyvt.api.VtClient._request")
    def test_batch_sql(self, mock_request, client):
        client.batch_sql(["a", "b"])

        mock_request.assert_called_once_with(
            "POST", "/v1/sqlite/batch", json={"statements": ["a", "b"]}
        )
