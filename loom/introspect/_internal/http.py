from __future__ import annotations

import http.client
import json
import socket
import ssl
import urllib.parse
from typing import Any

from .config import get_default_timeout_ms
from .errors import (
    invalid_request_error,
    parameter_rejected_error,
    probe_unreachable_error,
    timeout_error,
)


def _timeout_seconds(timeout_ms: int | None) -> float:
    if timeout_ms is None:
        timeout_ms = get_default_timeout_ms()
    return max(0.001, timeout_ms / 1000.0)


def _make_connection(
    parsed: urllib.parse.ParseResult,
    timeout_s: float,
    *,
    proxy_url: str | None,
) -> http.client.HTTPConnection:
    scheme = parsed.scheme.lower()
    target_host = parsed.hostname
    if not target_host:
        raise invalid_request_error(f"invalid url: {parsed.geturl()}")

    is_https = scheme == "https"
    if not is_https and scheme != "http":
        raise invalid_request_error(f"unsupported url scheme: {scheme}")
    target_port = parsed.port or (443 if is_https else 80)

    if proxy_url:
        p = urllib.parse.urlparse(proxy_url)
        if not p.hostname:
            raise invalid_request_error(f"invalid proxy url: {proxy_url}")
        if p.scheme.lower() not in {"http", "https"}:
            raise invalid_request_error(f"unsupported proxy url scheme: {p.scheme}")
        proxy_port = p.port or (443 if p.scheme == "https" else 80)
        if is_https:
            conn: http.client.HTTPConnection = http.client.HTTPSConnection(
                p.hostname, proxy_port, timeout=timeout_s, context=ssl.create_default_context()
            )
        else:
            conn = http.client.HTTPConnection(p.hostname, proxy_port, timeout=timeout_s)
        conn.set_tunnel(target_host, target_port)
        return conn

    if is_https:
        return http.client.HTTPSConnection(
            target_host, target_port, timeout=timeout_s, context=ssl.create_default_context()
        )
    return http.client.HTTPConnection(target_host, target_port, timeout=timeout_s)


def _path_with_query(parsed: urllib.parse.ParseResult) -> str:
    path = parsed.path or "/"
    if parsed.query:
        return f"{path}?{parsed.query}"
    return path


def _extract_error_message(body: bytes) -> tuple[str, str | None]:
    if not body:
        return "empty error body", None
    try:
        obj = json.loads(body)
    except ValueError:
        text = body.decode("utf-8", errors="replace")
        return text[:2_000], None

    if isinstance(obj, dict):
        if isinstance(obj.get("error"), dict):
            err = obj["error"]
            msg = err.get("message") or err.get("detail") or str(err)
            param = err.get("param")
            return str(msg)[:2_000], str(param) if param else None
        msg = obj.get("message") or obj.get("detail") or str(obj)
        param = obj.get("param")
        return str(msg)[:2_000], str(param) if param else None

    return str(obj)[:2_000], None


def _raise_for_status(status: int, body: bytes) -> None:
    message, parameter = _extract_error_message(body)
    if status in (400, 404, 409, 415, 422):
        raise parameter_rejected_error(message, parameter=parameter)
    if status in (408, 504):
        raise timeout_error(message)
    if status in (401, 403):
        raise probe_unreachable_error(f"runner refused access ({status}): {message}", retryable=False)
    if status == 429 or 500 <= status <= 599:
        raise probe_unreachable_error(f"runner error ({status}): {message}", retryable=True)
    raise probe_unreachable_error(f"unexpected runner status ({status}): {message}", retryable=False)


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

    parsed = urllib.parse.urlparse(url)
    path = _path_with_query(parsed)
    timeout_s = _timeout_seconds(timeout_ms)
    conn = _make_connection(parsed, timeout_s, proxy_url=proxy_url)
    try:
        conn.request(method.upper(), path, body=body, headers=req_headers)
        resp = conn.getresponse()
        raw = resp.read()
        if resp.status < 200 or resp.status >= 300:
            _raise_for_status(resp.status, raw)
        if not raw:
            return {}
        try:
            obj = json.loads(raw)
        except ValueError:
            raise probe_unreachable_error("invalid json response", retryable=True)
        if not isinstance(obj, dict):
            raise probe_unreachable_error("invalid json response", retryable=True)
        return obj
    except (socket.timeout, TimeoutError):
        raise timeout_error("request timeout")
    except (ssl.SSLError, http.client.HTTPException, OSError) as e:
        raise probe_unreachable_error(f"network error: {type(e).__name__}", retryable=True)
    finally:
        conn.close()
