"""Request pipeline stages installed by :func:`acquisitions.api.create_app`."""

import json
import logging
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from starlette.middleware.base import BaseHTTPMiddleware

access_logger = logging.getLogger("acquisitions.access")

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

MAX_NESTING_DEPTH = 5
MAX_FORM_FIELDS = 1000
MAX_ARRAY_INDEX = 20


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add protective response headers unless a handler already set them."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]
        return response


def _media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";")[0].strip().lower()


class _BodyParseError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class _BodyParserMiddleware(BaseHTTPMiddleware):
    """Shared plumbing for the body parsers.

    Subclasses decide which media types they handle and how the raw bytes
    turn into a payload. The payload lands on ``request.state.body``; a
    request no parser claims ends up with an empty dict.
    """

    def __init__(self, app, limit: int = 100 * 1024):
        super().__init__(app)
        self.limit = limit

    def accepts(self, media_type: str) -> bool:
        raise NotImplementedError

    def parse(self, raw: bytes):
        raise NotImplementedError

    async def dispatch(self, request: Request, call_next):
        if not hasattr(request.state, "body"):
            request.state.body = {}
        if not self.accepts(_media_type(request)):
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit:
            return JSONResponse({"detail": "Request body too large"}, status_code=413)
        raw = await request.body()
        if len(raw) > self.limit:
            return JSONResponse({"detail": "Request body too large"}, status_code=413)

        try:
            request.state.body = self.parse(raw) if raw else {}
        except _BodyParseError as exc:
            return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
        return await call_next(request)


class JSONBodyMiddleware(_BodyParserMiddleware):
    """Decode ``application/json`` (and ``+json``) request bodies."""

    def accepts(self, media_type: str) -> bool:
        return media_type == "application/json" or media_type.endswith("+json")

    def parse(self, raw: bytes):
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise _BodyParseError(400, "Malformed JSON body") from exc


class URLEncodedBodyMiddleware(_BodyParserMiddleware):
    """Decode form bodies, expanding bracketed keys into nested objects."""

    def accepts(self, media_type: str) -> bool:
        return media_type == "application/x-www-form-urlencoded"

    def parse(self, raw: bytes):
        try:
            pairs = parse_qsl(
                raw.decode("utf-8", errors="replace"),
                keep_blank_values=True,
                max_num_fields=MAX_FORM_FIELDS,
            )
        except ValueError as exc:
            raise _BodyParseError(413, "Too many parameters") from exc
        return parse_nested(pairs)


def split_key(key: str, depth: int = MAX_NESTING_DEPTH):
    """Split ``a[b][]`` into ``["a", "b", ""]``.

    Segments past ``depth`` are kept together as one literal key, and a key
    whose brackets do not close is returned whole.
    """
    start = key.find("[")
    if start <= 0:
        return [key]
    segments = [key[:start]]
    rest = key[start:]
    while rest.startswith("["):
        end = rest.find("]")
        if end == -1:
            return [key]
        if len(segments) > depth:
            segments.append(rest)
            return segments
        segments.append(rest[1:end])
        rest = rest[end + 1:]
    if rest:
        segments[-1] += rest
    return segments


def _next_index(node):
    indices = [k for k in node if isinstance(k, int)]
    return max(indices) + 1 if indices else 0


def _nested_key(node, segment):
    if segment == "":
        return _next_index(node)
    if segment.isdigit() and int(segment) <= MAX_ARRAY_INDEX:
        return int(segment)
    return segment


def _compact(node):
    """Turn nodes keyed only by positions into lists, in index order."""
    if not isinstance(node, dict):
        return node
    if node and all(isinstance(k, int) for k in node):
        return [_compact(node[k]) for k in sorted(node)]
    return {str(k): _compact(v) for k, v in node.items()}


def parse_nested(pairs):
    """Build a nested payload from decoded form pairs.

    ``a[b]=1`` becomes ``{"a": {"b": "1"}}``; ``a[]=1&a[]=2`` and
    ``a[1]=2&a[0]=1`` both become ``{"a": ["1", "2"]}`` (indices above 20
    stay object keys) and a repeated plain key collects into a list. A scalar
    followed by a nested key keeps both: ``a=1&a[b]=2`` gives
    ``{"a": ["1", {"b": "2"}]}``.
    """
    result = {}
    for key, value in pairs:
        segments = split_key(key)
        target = result
        for depth, segment in enumerate(segments):
            slot = segment if depth == 0 else _nested_key(target, segment)
            existing = target.get(slot)
            if depth == len(segments) - 1:
                if slot not in target:
                    target[slot] = value
                elif isinstance(existing, dict):
                    existing[_next_index(existing)] = value
                else:
                    target[slot] = {0: existing, 1: value}
            elif isinstance(existing, dict):
                target = existing
            else:
                child = {}
                target[slot] = child if slot not in target else {0: existing, 1: child}
                target = child
    return {key: _compact(node) for key, node in result.items()}


def combined_log_line(request: Request, status_code: int, content_length) -> str:
    """Render a request/response pair in Apache combined log format."""
    client = request.client.host if request.client else "-"
    stamp = datetime.now(timezone.utc).strftime("%d/%b/%Y:%H:%M:%S %z")
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    version = request.scope.get("http_version", "1.1")
    referrer = request.headers.get("referer", "-")
    agent = request.headers.get("user-agent", "-")
    return (
        f'{client} - - [{stamp}] "{request.method} {target} HTTP/{version}" '
        f'{status_code} {content_length or "-"} "{referrer}" "{agent}"'
    )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log every request in combined format while updating metrics."""

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status="500",
            ).inc()
            access_logger.exception(
                "error handling %s %s", request.method, request.url.path
            )
            raise
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        access_logger.info(
            combined_log_line(
                request, response.status_code, response.headers.get("content-length")
            )
        )
        return response


def parse_cookie_value(value: str):
    """Decode ``j:``-prefixed JSON cookies, leaving other values untouched."""
    if not value.startswith("j:"):
        return value
    try:
        return json.loads(value[2:])
    except ValueError:
        return value


class CookieParserMiddleware(BaseHTTPMiddleware):
    """Expose parsed cookies on ``request.state``.

    No signing secret is configured, so ``signed_cookies`` is always empty.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.cookies = {
            name: parse_cookie_value(value) for name, value in request.cookies.items()
        }
        request.state.signed_cookies = {}
        return await call_next(request)
