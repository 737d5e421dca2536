import ipaddress
import os
import socket
import tempfile
import unittest
from unittest.mock import patch


class _FakeHttpResponse:
    def __init__(self, *, status: int, headers: dict[str, str] | None = None, body: bytes = b"") -> None:
        self.status = status
        self._headers = {k.lower(): v for k, v in (headers or {}).items()}
        self._body = body
        self._offset = 0

    def getheader(self, name: str) -> str | None:
        return self._headers.get(name.lower())

    def read(self, n: int | None = None) -> bytes:
        if n is None:
            out = self._body[self._offset :]
            self._offset = len(self._body)
            return out
        if self._offset >= len(self._body):
            return b""
        end = min(len(self._body), self._offset + n)
        out = self._body[self._offset : end]
        self._offset = end
        return out


class _FakeHttpConnection:
    def __init__(self, resp: _FakeHttpResponse) -> None:
        self._resp = resp
        self.request_args: tuple[str, str] | None = None
        self.request_headers: dict[str, str] | None = None

    def request(self, method: str, path: str, body: object = None, headers: dict[str, str] | None = None):  # noqa: ARG002
        self.request_args = (method, path)
        self.request_headers = dict(headers or {})

    def getresponse(self) -> _FakeHttpResponse:
        return self._resp

    def close(self) -> None:
        return


def _public_only(host: str):  # type: ignore[no-untyped-def]
    if host == "public.example":
        return ([ipaddress.ip_address("93.184.216.34")], False)
    if host == "private.example":
        return ([ipaddress.ip_address("127.0.0.1")], True)
    raise AssertionError(f"unexpected host: {host}")


class TestValidateMediaUrl(unittest.TestCase):
    def test_rejects_private_and_loopback_hosts(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import validate_media_url

        for url in (
            "http://localhost/x",
            "http://app.localhost/x",
            "http://127.0.0.1:8080/x",
            "http://10.1.2.3/x",
            "http://172.16.0.1/x",
            "http://192.168.1.1/x",
            "http://169.254.169.254/latest/meta-data",
            "http://0.0.0.0/x",
            "http://[::1]/x",
        ):
            with self.subTest(url=url):
                with self.assertRaises(MediaGenError) as cm:
                    validate_media_url(url)
                self.assertEqual(cm.exception.info.type, "SSRFError")

    def test_rejects_other_schemes(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import validate_media_url

        for url in ("ftp://example.com/x", "file:///etc/passwd", "", "not a url"):
            with self.subTest(url=url):
                with self.assertRaises(MediaGenError):
                    validate_media_url(url)

    def test_https_and_origin_requirements(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import validate_media_url

        with self.assertRaises(MediaGenError):
            validate_media_url("http://cdn.example.com/a.png", require_https=True)
        with self.assertRaises(MediaGenError):
            validate_media_url("https://evil.example.com/x", required_prefix="https://queue.fal.run/")
        self.assertEqual(
            validate_media_url("https://queue.fal.run/a/b", require_https=True, required_prefix="https://queue.fal.run/"),
            "https://queue.fal.run/a/b",
        )

    def test_public_url_is_returned_unchanged(self) -> None:
        from nous.mediagen._internal.http import validate_media_url

        self.assertEqual(validate_media_url("https://cdn.example.com/a.png?x=1"), "https://cdn.example.com/a.png?x=1")


class TestResolveProviderUrl(unittest.TestCase):
    def test_falls_back_for_missing_or_foreign_urls(self) -> None:
        from nous.mediagen._internal.http import resolve_provider_url

        fallback = "https://api.wavespeed.ai/api/v3/predictions/t1/result"
        for candidate in (None, "", 5, "http://169.254.169.254/x", "https://evil.example.com/x", "http://api.wavespeed.ai/x"):
            with self.subTest(candidate=candidate):
                self.assertEqual(
                    resolve_provider_url(candidate, fallback=fallback, required_prefix="https://api.wavespeed.ai"),
                    fallback,
                )

    def test_accepts_same_origin_url(self) -> None:
        from nous.mediagen._internal.http import resolve_provider_url

        url = "https://api.wavespeed.ai/api/v3/predictions/t1/result?x=1"
        self.assertEqual(
            resolve_provider_url(url, fallback="https://fallback.example/", required_prefix="https://api.wavespeed.ai"),
            url,
        )


class TestFetchPinsIpAgainstDnsRebinding(unittest.TestCase):
    def test_download_resolves_once_and_pins_connect_ip(self) -> None:
        from nous.mediagen._internal.http import download_to_file

        calls: dict[str, int] = {"rebind.example": 0}

        def _fake_getaddrinfo(host: str, port: object, proto: int):  # type: ignore[no-untyped-def]
            self.assertEqual(port, None)
            self.assertEqual(proto, socket.IPPROTO_TCP)
            if host != "rebind.example":
                raise AssertionError(f"unexpected host lookup: {host}")
            calls["rebind.example"] += 1
            if calls["rebind.example"] == 1:
                return [(socket.AF_INET, socket.SOCK_STREAM, proto, "", ("93.184.216.34", 0))]
            return [(socket.AF_INET, socket.SOCK_STREAM, proto, "", ("127.0.0.1", 0))]

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            self.assertIsNone(proxy_url)
            self.assertEqual(parsed.hostname, "rebind.example")
            self.assertEqual(connect_host, "93.184.216.34")
            self.assertEqual(tls_server_hostname, "rebind.example")
            body = b"ok"
            resp = _FakeHttpResponse(status=200, headers={"Content-Length": str(len(body))}, body=body)
            return _FakeHttpConnection(resp)

        with tempfile.TemporaryDirectory(prefix="mediagen-test-") as d:
            out_path = os.path.join(d, "out.bin")
            with patch("nous.mediagen._internal.http.socket.getaddrinfo", side_effect=_fake_getaddrinfo):
                with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                    download_to_file(url="http://rebind.example/x", output_path=out_path, timeout_ms=100)

            with open(out_path, "rb") as f:
                self.assertEqual(f.read(), b"ok")

        self.assertEqual(calls["rebind.example"], 1)


class TestMakeConnectionProxyHttpsTarget(unittest.TestCase):
    def test_http_proxy_with_https_target_uses_httpsconnection(self) -> None:
        import http.client
        import urllib.parse

        from nous.mediagen._internal.http import _make_connection

        parsed = urllib.parse.urlparse("https://example.com/v1/models")
        conn = _make_connection(parsed, 0.1, proxy_url="http://proxy.local:8080")
        self.assertIsInstance(conn, http.client.HTTPSConnection)
        self.assertEqual(conn.host, "proxy.local")
        self.assertEqual(conn.port, 8080)
        self.assertEqual(getattr(conn, "_tunnel_host", None), "example.com")
        self.assertEqual(getattr(conn, "_tunnel_port", None), 443)


class TestFetchMediaRedirectAndLimits(unittest.TestCase):
    def test_redirect_to_private_host_is_blocked(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import fetch_media

        calls: list[str] = []

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            self.assertEqual(parsed.hostname, "public.example")
            self.assertEqual(connect_host, "93.184.216.34")
            calls.append(parsed.hostname)
            return _FakeHttpConnection(_FakeHttpResponse(status=302, headers={"Location": "http://private.example/secret"}))

        with patch.dict(os.environ, {"NOUS_MEDIAGEN_ALLOW_PRIVATE_URLS": "0"}, clear=False):
            with patch("nous.mediagen._internal.http._resolve_url_host_ips", side_effect=_public_only):
                with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                    with self.assertRaises(MediaGenError) as cm:
                        fetch_media("http://public.example/start", timeout_ms=100)

        self.assertEqual(cm.exception.info.type, "SSRFError")
        self.assertIn("private/loopback", cm.exception.info.message)
        self.assertEqual(calls, ["public.example"])

    def test_rejects_declared_length_over_ceiling(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import fetch_media

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            return _FakeHttpConnection(_FakeHttpResponse(status=200, headers={"Content-Length": "4"}, body=b"test"))

        with patch("nous.mediagen._internal.http._resolve_url_host_ips", side_effect=_public_only):
            with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                with self.assertRaises(MediaGenError) as cm:
                    fetch_media("http://public.example/x", max_bytes=3, timeout_ms=100)

        self.assertEqual(cm.exception.info.type, "UploadTooLargeError")
        self.assertIn("media too large", cm.exception.info.message)

    def test_rejects_body_exceeding_ceiling_without_length(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import fetch_media

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            return _FakeHttpConnection(_FakeHttpResponse(status=200, body=b"test"))

        with patch("nous.mediagen._internal.http._resolve_url_host_ips", side_effect=_public_only):
            with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                with self.assertRaises(MediaGenError) as cm:
                    fetch_media("http://public.example/x", max_bytes=3, timeout_ms=100)

        self.assertEqual(cm.exception.info.type, "UploadTooLargeError")
        self.assertIn("media exceeded limit", cm.exception.info.message)

    def test_returns_content_type_and_bytes(self) -> None:
        from nous.mediagen._internal.http import fetch_media

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            return _FakeHttpConnection(
                _FakeHttpResponse(status=200, headers={"Content-Type": "image/png"}, body=b"\x89PNG-data")
            )

        with patch("nous.mediagen._internal.http._resolve_url_host_ips", side_effect=_public_only):
            with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                media = fetch_media("http://public.example/a.png", timeout_ms=100)

        self.assertEqual(media.content_type, "image/png")
        self.assertEqual(media.data, b"\x89PNG-data")

    def test_timeout_maps_to_timeout_error(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.http import fetch_media

        class _SlowResponse(_FakeHttpResponse):
            def read(self, n: int | None = None) -> bytes:  # noqa: ARG002
                raise socket.timeout("timed out")

        def _fake_make_connection(parsed, timeout_s, *, proxy_url, connect_host=None, tls_server_hostname=None):  # type: ignore[no-untyped-def]
            return _FakeHttpConnection(_SlowResponse(status=200))

        with patch("nous.mediagen._internal.http._resolve_url_host_ips", side_effect=_public_only):
            with patch("nous.mediagen._internal.http._make_connection", side_effect=_fake_make_connection):
                with self.assertRaises(MediaGenError) as cm:
                    fetch_media("http://public.example/x", timeout_ms=100)

        self.assertEqual(cm.exception.info.type, "TimeoutError")
