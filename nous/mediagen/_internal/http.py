from __future__ import annotations

import errno
import http.client
import ipaddress
import json
import logging
import os
import re
import socket
import ssl
import tempfile
import urllib.parse
from base64 import b64encode
from dataclasses import dataclass
from typing import Any

from .config import get_default_timeout_ms, get_media_timeout_ms
from .errors import (
    MediaGenError,
    auth_error,
    invalid_request_error,
    rate_limit_error,
    ssrf_error,
    timeout_error,
    transport_error,
    upload_too_large_error,
    validation_error,
)

logger = logging.getLogger(__name__)

MAX_MEDIA_BYTES = 500 * 1024 * 1024

_ALLOW_PRIVATE_ENV = "NOUS_MEDIAGEN_ALLOW_PRIVATE_URLS"

_BLOCKED_HOSTNAMES = frozenset({"localhost", "[::1]", "::1"})

_PRIVATE_HOST_PATTERNS = (
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2\d|3[01])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^0\."),
)


def _timeout_seconds(timeout_ms: int | None) -> float:
    if timeout_ms is None:
        timeout_ms = get_default_timeout_ms()
    return max(0.001, timeout_ms / 1000.0)


def _env_truthy(name: str) -> bool:
    return os.environ.get(name) in {"1", "true", "TRUE", "yes", "YES"}


def _is_private_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return bool(
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def _resolve_host_ips(host: str) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    out: list[ipaddress.IPv4Address | ipaddress.IPv6Address] = []
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except OSError:
        return out
    seen: set[ipaddress.IPv4Address | ipaddress.IPv6Address] = set()
    for family, _, _, _, sockaddr in infos:
        if family not in (socket.AF_INET, socket.AF_INET6):
            continue
        try:
            ip = ipaddress.ip_address(sockaddr[0])
        except ValueError:
            continue
        if ip in seen:
            continue
        seen.add(ip)
        out.append(ip)
    return out


def _resolve_url_host_ips(host: str) -> tuple[list[ipaddress.IPv4Address | ipaddress.IPv6Address], bool]:
    """
    Resolve a URL host once and classify it as private/loopback.

    Returns: (resolved_ips, is_private)
    """
    h = host.strip().lower().rstrip(".")
    if h in _BLOCKED_HOSTNAMES or h.endswith(".localhost"):
        return [], True
    try:
        ip = ipaddress.ip_address(h.strip("[]"))
    except ValueError:
        ip = None
    if ip is not None:
        return [ip], _is_private_ip(ip)
    resolved = _resolve_host_ips(h)
    return resolved, any(_is_private_ip(x) for x in resolved)


def validate_media_url(
    url: str,
    *,
    require_https: bool = False,
    required_prefix: str | None = None,
) -> str:
    """
    Check a URL against the SSRF allow-list before any request is issued against it.

    Only literal hosts are inspected here; `fetch_media` additionally checks the
    resolved addresses. Raises `SSRFError` on rejection, returns the URL unchanged.
    """
    if not isinstance(url, str) or not url:
        raise ssrf_error("invalid url: empty")
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        raise ssrf_error(f"invalid url: {url[:200]}")
    scheme = parsed.scheme.lower()
    if scheme not in {"http", "https"}:
        raise ssrf_error(f"unsupported url scheme: {scheme or '<none>'}")
    if require_https and scheme != "https":
        raise ssrf_error("url must use https")
    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        raise ssrf_error(f"invalid url: {url[:200]}")
    if host in _BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        raise ssrf_error(f"blocked host: {host}")
    if any(p.match(host) for p in _PRIVATE_HOST_PATTERNS):
        raise ssrf_error(f"blocked private address: {host}")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None
    if ip is not None and _is_private_ip(ip):
        raise ssrf_error(f"blocked private address: {host}")
    if required_prefix is not None and not url.startswith(required_prefix):
        raise ssrf_error(f"url does not match expected origin {required_prefix}")
    return url


def _proxy_tunnel_headers(proxy: urllib.parse.ParseResult) -> dict[str, str] | None:
    user = proxy.username
    pw = proxy.password
    if user is None and pw is None:
        return None
    user = "" if user is None else user
    pw = "" if pw is None else pw
    token = b64encode(f"{user}:{pw}".encode("utf-8")).decode("ascii")
    return {"Proxy-Authorization": f"Basic {token}"}


class _PinnedHTTPConnection(http.client.HTTPConnection):
    def __init__(self, host: str, port: int, *, connect_host: str, timeout: float) -> None:
        super().__init__(host, port, timeout=timeout)
        self._connect_host = connect_host

    def connect(self) -> None:
        self.sock = self._create_connection(
            (self._connect_host, self.port),
            self.timeout,
            self.source_address,
        )
        try:
            self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            if e.errno != errno.ENOPROTOOPT:
                raise
        if self._tunnel_host:
            self._tunnel()


class _PinnedHTTPSConnection(http.client.HTTPSConnection):
    def __init__(
        self,
        host: str,
        port: int,
        *,
        connect_host: str,
        tls_server_hostname: str,
        timeout: float,
        context: ssl.SSLContext,
    ) -> None:
        super().__init__(host, port, timeout=timeout, context=context)
        self._connect_host = connect_host
        self._tls_server_hostname = tls_server_hostname

    def connect(self) -> None:
        self.sock = self._create_connection(
            (self._connect_host, self.port),
            self.timeout,
            self.source_address,
        )
        try:
            self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            if e.errno != errno.ENOPROTOOPT:
                raise
        if self._tunnel_host:
            self._tunnel()
        self.sock = self._context.wrap_socket(self.sock, server_hostname=self._tls_server_hostname)


def _make_connection(
    parsed: urllib.parse.ParseResult,
    timeout_s: float,
    *,
    proxy_url: str | None,
    connect_host: str | None = None,
    tls_server_hostname: str | None = None,
) -> http.client.HTTPConnection:
    scheme = parsed.scheme.lower()
    target_host = parsed.hostname
    if not target_host:
        raise invalid_request_error(f"invalid url: {parsed.geturl()}")

    target_port = parsed.port
    is_https = scheme == "https"
    if not is_https and scheme != "http":
        raise invalid_request_error(f"unsupported url scheme: {scheme}")

    target_connect_host = target_host if connect_host is None else connect_host
    tls_hostname = target_host if tls_server_hostname is None else tls_server_hostname

    if proxy_url:
        p = urllib.parse.urlparse(proxy_url)
        if not p.hostname:
            raise invalid_request_error(f"invalid proxy url: {proxy_url}")
        if p.scheme.lower() not in {"http", "https"}:
            raise invalid_request_error(f"unsupported proxy url scheme: {p.scheme}")
        proxy_port = p.port or (443 if p.scheme == "https" else 80)
        effective_target_port = target_port or (443 if is_https else 80)
        if is_https:
            conn = _PinnedHTTPSConnection(
                p.hostname,
                proxy_port,
                connect_host=p.hostname,
                tls_server_hostname=tls_hostname,
                timeout=timeout_s,
                context=ssl.create_default_context(),
            )
        else:
            conn = http.client.HTTPConnection(p.hostname, proxy_port, timeout=timeout_s)
        conn.set_tunnel(target_connect_host, effective_target_port, headers=_proxy_tunnel_headers(p))
        return conn

    if is_https:
        ctx = ssl.create_default_context()
        effective_port = target_port or 443
        if target_connect_host != target_host or tls_hostname != target_host:
            return _PinnedHTTPSConnection(
                target_host,
                effective_port,
                connect_host=target_connect_host,
                tls_server_hostname=tls_hostname,
                timeout=timeout_s,
                context=ctx,
            )
        return http.client.HTTPSConnection(target_host, effective_port, timeout=timeout_s, context=ctx)
    effective_port = target_port or 80
    if target_connect_host != target_host:
        return _PinnedHTTPConnection(
            target_host,
            effective_port,
            connect_host=target_connect_host,
            timeout=timeout_s,
        )
    return http.client.HTTPConnection(target_host, effective_port, timeout=timeout_s)


def _path_with_query(parsed: urllib.parse.ParseResult) -> str:
    path = parsed.path or "/"
    if parsed.query:
        return f"{path}?{parsed.query}"
    return path


def _detail_message(detail: Any) -> str | None:
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, list):
        msgs = []
        for item in detail:
            if isinstance(item, dict) and item.get("msg"):
                msgs.append(str(item["msg"]))
            elif isinstance(item, str) and item:
                msgs.append(item)
        if msgs:
            return "; ".join(msgs)
    return None


def _extract_error_message(body: bytes) -> tuple[str, str | None]:
    """
    Pull a human readable message out of the error envelopes providers use.

    Tried in order: `{error:{message}}`, `{detail: str | [{msg}]}`, `{message}`,
    `{error: str}`, then the raw body text.
    """
    if not body:
        return "empty error body", None
    try:
        obj = json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace")[:2_000], None

    if not isinstance(obj, dict):
        return str(obj)[:2_000], None

    code = obj.get("code") or obj.get("status")
    err = obj.get("error")
    if isinstance(err, dict):
        code = err.get("code") or err.get("status") or code
        if err.get("message"):
            return str(err["message"])[:2_000], None if code is None else str(code)
    detail = _detail_message(obj.get("detail"))
    if detail:
        return detail[:2_000], None if code is None else str(code)
    if obj.get("message") or obj.get("msg"):
        return str(obj.get("message") or obj.get("msg"))[:2_000], None if code is None else str(code)
    if isinstance(err, str) and err:
        return err[:2_000], None if code is None else str(code)
    return body.decode("utf-8", errors="replace")[:2_000], None if code is None else str(code)


def _raise_for_status(status: int, body: bytes) -> None:
    message, provider_code = _extract_error_message(body)
    if status in (401, 403):
        raise auth_error(message, provider_code=provider_code, http_status=status)
    if status == 429:
        raise rate_limit_error(message, provider_code=provider_code, http_status=status)
    if status in (400, 404, 409, 415, 422):
        raise validation_error(message, provider_code=provider_code, http_status=status)
    if status in (408, 504):
        raise timeout_error(message, http_status=status)
    raise transport_error(f"HTTP {status}: {message}", provider_code=provider_code, http_status=status)


def _open_following_redirects(
    url: str,
    *,
    timeout_ms: int | None,
    headers: dict[str, str] | None,
    proxy_url: str | None,
) -> tuple[http.client.HTTPConnection, http.client.HTTPResponse]:
    """
    GET `url`, pinning each hop to its resolved address and re-checking it.

    Returns an open connection and a 2xx response; the caller closes the connection.
    """
    cur = url
    initial_host: str | None = None
    for _ in range(5):
        parsed = urllib.parse.urlparse(cur)
        if parsed.scheme.lower() not in {"http", "https"}:
            raise ssrf_error(f"unsupported url scheme: {parsed.scheme}")
        if not parsed.hostname:
            raise ssrf_error(f"invalid url: {cur[:200]}")
        if initial_host is None:
            initial_host = parsed.hostname
        resolved, is_private = _resolve_url_host_ips(parsed.hostname)
        if is_private and not _env_truthy(_ALLOW_PRIVATE_ENV):
            raise ssrf_error(f"url host is private/loopback; set {_ALLOW_PRIVATE_ENV}=1 to allow")
        if not resolved:
            raise transport_error(f"dns resolution failed: {parsed.hostname}")

        conn = _make_connection(
            parsed,
            _timeout_seconds(timeout_ms),
            proxy_url=proxy_url,
            connect_host=str(resolved[0]),
            tls_server_hostname=parsed.hostname,
        )
        try:
            req_headers: dict[str, str] = {"Accept": "*/*"}
            if headers and parsed.hostname.lower() == initial_host.lower():
                req_headers.update(headers)
            if proxy_url:
                default_port = 443 if parsed.scheme.lower() == "https" else 80
                target_port = parsed.port or default_port
                req_headers["Host"] = (
                    parsed.hostname if target_port == default_port else f"{parsed.hostname}:{target_port}"
                )
            conn.request("GET", _path_with_query(parsed), headers=req_headers)
            resp = conn.getresponse()
            if resp.status in {301, 302, 303, 307, 308}:
                loc = resp.getheader("Location")
                conn.close()
                if not loc:
                    raise transport_error("redirect response missing Location header")
                cur = urllib.parse.urljoin(cur, loc)
                logger.debug("following redirect to %s", cur)
                continue
            if resp.status < 200 or resp.status >= 300:
                raw = resp.read(64 * 1024 + 1)
                _raise_for_status(resp.status, raw[: 64 * 1024])
            return conn, resp
        except (socket.timeout, TimeoutError):
            conn.close()
            raise timeout_error("request timeout")
        except (ssl.SSLError, http.client.HTTPException, OSError) as e:
            conn.close()
            raise transport_error(f"network error: {type(e).__name__}")
        except Exception:
            conn.close()
            raise

    raise transport_error("too many redirects")


def _check_declared_length(resp: http.client.HTTPResponse, max_bytes: int) -> None:
    raw_len = resp.getheader("Content-Length")
    if not raw_len:
        return
    try:
        n = int(raw_len)
    except ValueError:
        return
    if n > max_bytes:
        raise upload_too_large_error(f"media too large ({n} > {max_bytes} bytes)")


@dataclass(frozen=True, slots=True)
class FetchedMedia:
    content_type: str | None
    data: bytes


def fetch_media(
    url: str,
    *,
    max_bytes: int = MAX_MEDIA_BYTES,
    timeout_ms: int | None = None,
    proxy_url: str | None = None,
) -> FetchedMedia:
    """
    Buffer a remote media file in memory under a hard byte ceiling.

    The ceiling is checked against `Content-Length` before reading and against
    the running byte count while buffering.
    """
    effective_timeout = get_media_timeout_ms() if timeout_ms is None else timeout_ms
    conn, resp = _open_following_redirects(url, timeout_ms=effective_timeout, headers=None, proxy_url=proxy_url)
    try:
        _check_declared_length(resp, max_bytes)
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = resp.read(64 * 1024)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise upload_too_large_error(f"media exceeded limit ({total} > {max_bytes} bytes)")
            chunks.append(chunk)
        return FetchedMedia(content_type=resp.getheader("Content-Type"), data=b"".join(chunks))
    except (socket.timeout, TimeoutError):
        raise timeout_error("media download timeout")
    except (ssl.SSLError, http.client.HTTPException, OSError) as e:
        raise transport_error(f"network error: {type(e).__name__}")
    finally:
        conn.close()


def download_to_file(
    *,
    url: str,
    output_path: str,
    timeout_ms: int | None = None,
    max_bytes: int = MAX_MEDIA_BYTES,
    proxy_url: str | None = None,
) -> None:
    """
    Stream a URL to a local file under the same size ceiling as `fetch_media`.

    Security: rejects private/loopback hosts unless `NOUS_MEDIAGEN_ALLOW_PRIVATE_URLS=1`.
    """
    effective_timeout = get_media_timeout_ms() if timeout_ms is None else timeout_ms
    conn, resp = _open_following_redirects(url, timeout_ms=effective_timeout, headers=None, proxy_url=proxy_url)
    try:
        _check_declared_length(resp, max_bytes)
        out_dir = os.path.dirname(os.path.abspath(output_path)) or "."
        with tempfile.NamedTemporaryFile(prefix="mediagen-dl-", dir=out_dir, delete=False) as tmp:
            tmp_path = tmp.name
        total = 0
        try:
            with open(tmp_path, "wb") as f:
                while True:
                    chunk = resp.read(64 * 1024)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > max_bytes:
                        raise upload_too_large_error(f"media exceeded limit ({total} > {max_bytes} bytes)")
                    f.write(chunk)
            os.replace(tmp_path, output_path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
    except (socket.timeout, TimeoutError):
        raise timeout_error("media download timeout")
    except (ssl.SSLError, http.client.HTTPException, OSError) as e:
        raise transport_error(f"network error: {type(e).__name__}")
    finally:
        conn.close()


def _send(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None,
    timeout_ms: int | None,
    proxy_url: str | None,
) -> bytes:
    parsed = urllib.parse.urlparse(url)
    conn = _make_connection(parsed, _timeout_seconds(timeout_ms), proxy_url=proxy_url)
    try:
        conn.request(method.upper(), _path_with_query(parsed), body=body, headers=headers)
        resp = conn.getresponse()
        raw = resp.read()
        if resp.status < 200 or resp.status >= 300:
            _raise_for_status(resp.status, raw)
        return raw
    except (socket.timeout, TimeoutError):
        raise timeout_error("request timeout")
    except (ssl.SSLError, http.client.HTTPException, OSError) as e:
        raise transport_error(f"network error: {type(e).__name__}")
    finally:
        conn.close()


def request_json(
    *,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    json_body: Any | None = None,
    timeout_ms: int | None = None,
    proxy_url: str | None = None,
) -> dict[str, Any]:
    body = None if json_body is None else json.dumps(json_body, separators=(",", ":")).encode("utf-8")
    req_headers = {"Accept": "application/json"}
    if body is not None:
        req_headers["Content-Type"] = "application/json"
        req_headers["Content-Length"] = str(len(body))
    if headers:
        req_headers.update(headers)

    raw = _send(
        method=method,
        url=url,
        headers=req_headers,
        body=body,
        timeout_ms=timeout_ms,
        proxy_url=proxy_url,
    )
    if not raw:
        return {}
    try:
        obj = json.loads(raw)
    except ValueError:
        raise transport_error("invalid json response")
    if not isinstance(obj, dict):
        raise transport_error("invalid json response")
    return obj


def request_bytes(
    *,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: bytes | None = None,
    timeout_ms: int | None = None,
    proxy_url: str | None = None,
) -> bytes:
    req_headers: dict[str, str] = {}
    if body is not None:
        req_headers["Content-Length"] = str(len(body))
    if headers:
        req_headers.update(headers)
    return _send(
        method=method,
        url=url,
        headers=req_headers,
        body=body,
        timeout_ms=timeout_ms,
        proxy_url=proxy_url,
    )


def resolve_provider_url(url: Any, *, fallback: str, required_prefix: str) -> str:
    """
    Use a provider-supplied follow-up URL only if it passes the allow-list and
    points back at the provider's own origin; otherwise use `fallback`.
    """
    if not isinstance(url, str) or not url:
        return fallback
    try:
        return validate_media_url(url, require_https=True, required_prefix=required_prefix)
    except MediaGenError as e:
        logger.warning("rejected provider url %s (%s); using %s", url[:200], e.info.message, fallback)
        return fallback
