import logging
import time
import uuid

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("app.core.middleware")

REQUEST_ID_HEADER = "x-request-id"

# Push responses echo device tokens, so nothing in between may cache them.
_RESPONSE_HEADERS = {"cache-control": "no-store", "x-content-type-options": "nosniff"}
_STRIPPED_HEADERS = ("server", "x-powered-by")


def _request_target(scope: Scope) -> str:
  """Return path plus query string without touching the request body."""
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    return f"{path}?{query_string.decode('latin-1')}"

  return path


class RequestLoggingMiddleware:
  """Tag each exchange with a request id and log its status and latency."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    # Exception handlers read the id back through request.state.
    request_id = uuid.uuid4().hex
    scope.setdefault("state", {})["request_id"] = request_id
    started = time.perf_counter()
    method = scope.get("method", "UNKNOWN")
    target = _request_target(scope)
    status_code = 0

    async def send_with_request_id(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message.get("status", 0)
        MutableHeaders(scope=message).setdefault(REQUEST_ID_HEADER, request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("%s %s status=%s request_id=%s took=%.1fms", method, target, status_code or 500, request_id, elapsed_ms)


class SecurityHeadersMiddleware:
  """Hide server fingerprints and mark every response as uncacheable."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_hardened(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for name in _STRIPPED_HEADERS:
          if name in headers:
            del headers[name]
        for name, value in _RESPONSE_HEADERS.items():
          headers.setdefault(name, value)
      await send(message)

    await self.app(scope, receive, send_hardened)
