import unittest
from collections import deque
from unittest.mock import patch

import httpx
from google.auth.exceptions import DefaultCredentialsError, RefreshError

from mediasync.config import ConfigurationError, RetryConfig, SyncConfig
from mediasync.listing import READ_ONLY_SCOPE, ConnectivityError, GcsObjectLister


def _config(**overrides) -> SyncConfig:
    overrides.setdefault("retry", RetryConfig(max_attempts=3, base_delay=1.0, backoff_factor=2.0))
    overrides.setdefault("anonymous", True)
    return SyncConfig(bucket="artwork-medias", **overrides)


class RotatingCredentials:
    """Hands out a new token on every request, like short-lived ADC tokens do."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.refreshes = 0
        self._fail_with = fail_with

    def before_request(self, request, method, url, headers) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.refreshes += 1
        headers["authorization"] = f"Bearer token-{self.refreshes}"


class GcsObjectListerTestCase(unittest.TestCase):
    def test_pages_through_listing(self) -> None:
        requests: list[httpx.Request] = []
        pages = {
            None: {"items": [{"name": "001/010_cover.jpg"}, {"name": "001/010_cover.mp4"}], "nextPageToken": "p2"},
            "p2": {"items": [{"name": "002/005_only.mp4"}]},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

        lister = GcsObjectLister(_config(prefix="00", page_size=2), transport=httpx.MockTransport(handler))
        try:
            keys = list(lister)
        finally:
            lister.close()

        self.assertEqual(keys, ["001/010_cover.jpg", "001/010_cover.mp4", "002/005_only.mp4"])
        self.assertEqual(lister.pages_fetched, 2)
        self.assertEqual(requests[0].url.path, "/storage/v1/b/artwork-medias/o")
        self.assertEqual(requests[0].url.params.get("prefix"), "00")
        self.assertEqual(requests[0].url.params.get("maxResults"), "2")
        self.assertEqual(requests[0].url.params.get("fields"), "items(name),nextPageToken")
        self.assertNotIn("pageToken", requests[0].url.params)
        self.assertEqual(requests[1].url.params.get("pageToken"), "p2")

    def test_listing_is_lazy(self) -> None:
        calls = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"items": [{"name": "001/a.jpg"}]})

        lister = GcsObjectLister(_config(), transport=httpx.MockTransport(handler))
        try:
            iterator = iter(lister)
            self.assertEqual(len(calls), 0)
            self.assertEqual(next(iterator), "001/a.jpg")
            self.assertEqual(len(calls), 1)
        finally:
            lister.close()

    def test_empty_bucket(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        with GcsObjectLister(_config(), transport=transport) as lister:
            self.assertEqual(list(lister), [])

    def test_sends_bearer_token_when_configured(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"items": []})

        with GcsObjectLister(_config(access_token="ya29.token"), transport=httpx.MockTransport(handler)) as lister:
            list(lister)

        self.assertEqual(seen, ["Bearer ya29.token"])

    def test_anonymous_listing_sends_no_authorization(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"items": []})

        with GcsObjectLister(_config(), transport=httpx.MockTransport(handler)) as lister:
            list(lister)

        self.assertEqual(seen, [None])

    def test_default_credentials_are_refreshed_for_every_page(self) -> None:
        credentials = RotatingCredentials()
        seen: list[str | None] = []
        pages = {
            None: {"items": [{"name": "001/a.jpg"}], "nextPageToken": "p2"},
            "p2": {"items": [{"name": "002/b.jpg"}]},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

        with patch("google.auth.default", return_value=(credentials, "gallery-project")) as default_mock:
            lister = GcsObjectLister(_config(anonymous=False), transport=httpx.MockTransport(handler))
        with lister:
            keys = list(lister)

        default_mock.assert_called_once_with(scopes=[READ_ONLY_SCOPE])
        self.assertEqual(keys, ["001/a.jpg", "002/b.jpg"])
        self.assertEqual(seen, ["Bearer token-1", "Bearer token-2"])

    def test_missing_default_credentials_is_a_configuration_error(self) -> None:
        with patch("google.auth.default", side_effect=DefaultCredentialsError("no ADC")):
            with self.assertRaises(ConfigurationError):
                GcsObjectLister(_config(anonymous=False), transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    def test_refresh_failure_raises_without_request(self) -> None:
        attempts = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(200, json={"items": []})

        credentials = RotatingCredentials(fail_with=RefreshError("invalid_grant"))
        with GcsObjectLister(_config(), transport=httpx.MockTransport(handler), credentials=credentials) as lister:
            with self.assertRaises(ConnectivityError) as ctx:
                list(lister)

        self.assertEqual(len(attempts), 0)
        self.assertIn("invalid_grant", str(ctx.exception))

    def test_retries_server_errors_with_backoff(self) -> None:
        responses = deque([
            httpx.Response(503),
            httpx.Response(500),
            httpx.Response(200, json={"items": [{"name": "001/a.jpg"}]}),
        ])
        delays: list[float] = []

        transport = httpx.MockTransport(lambda request: responses.popleft())
        with GcsObjectLister(_config(), transport=transport, sleep=delays.append) as lister:
            keys = list(lister)

        self.assertEqual(keys, ["001/a.jpg"])
        self.assertEqual(delays, [1.0, 2.0])

    def test_retries_timeouts_then_gives_up(self) -> None:
        attempts = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        with GcsObjectLister(_config(), transport=httpx.MockTransport(handler), sleep=lambda _: None) as lister:
            with self.assertRaises(ConnectivityError):
                list(lister)

        self.assertEqual(len(attempts), 3)

    def test_client_errors_are_not_retried(self) -> None:
        attempts = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(403, json={"error": {"message": "denied"}})

        with GcsObjectLister(_config(), transport=httpx.MockTransport(handler), sleep=lambda _: None) as lister:
            with self.assertRaises(ConnectivityError) as ctx:
                list(lister)

        self.assertEqual(len(attempts), 1)
        self.assertIn("403", str(ctx.exception))

    def test_malformed_payload_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
        with GcsObjectLister(_config(), transport=transport) as lister:
            with self.assertRaises(ConnectivityError):
                list(lister)

    def test_items_that_are_not_a_list_raise(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"items": None}))
        with GcsObjectLister(_config(), transport=transport) as lister:
            with self.assertRaises(ConnectivityError) as ctx:
                list(lister)

        self.assertIn("Malformed listing response", str(ctx.exception))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
