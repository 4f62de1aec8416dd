"""Error taxonomy for the push API and the FastAPI handlers that render it."""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import get_settings

REQUIRED_DISPATCH_FIELDS = ("partnerId", "chatId", "kind")


class PushServiceError(Exception):
  """Base class for errors that map onto a specific HTTP response."""

  status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
  error = "Internal Server Error"

  def to_payload(self, *, debug: bool) -> dict[str, Any]:
    """Return the response body for this error."""
    return {"error": self.error}


class Unauthenticated(PushServiceError):
  """Raised when the bearer credential is missing, malformed or rejected."""

  status_code = status.HTTP_401_UNAUTHORIZED

  def __init__(self, reason: str, *, details: str | None = None, has_api_key: bool | None = None) -> None:
    super().__init__(reason)
    self.error = reason
    self.details = details
    self.has_api_key = has_api_key

  def to_payload(self, *, debug: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": self.error}
    if self.details:
      payload["details"] = self.details
    if self.has_api_key is not None:
      payload["hasXApiKey"] = self.has_api_key
    return payload


class InvalidRequest(PushServiceError):
  """Raised when mandatory dispatch fields are missing."""

  status_code = status.HTTP_400_BAD_REQUEST
  error = "Missing required fields"

  def __init__(self, missing: list[str]) -> None:
    super().__init__(f"Missing required fields: {', '.join(missing)}")
    self.missing = missing

  def to_payload(self, *, debug: bool) -> dict[str, Any]:
    return {"error": self.error, "required": list(REQUIRED_DISPATCH_FIELDS), "missing": list(self.missing)}


class BackendInitFailure(PushServiceError):
  """Raised when the Firebase backends cannot be initialized."""

  error = "Init failed"

  def to_payload(self, *, debug: bool) -> dict[str, Any]:
    cause = self.__cause__ or self
    details: dict[str, Any] = {"message": str(cause) or type(cause).__name__}
    if debug:
      details["stack"] = _format_stack(cause)
    return {"error": self.error, "details": details}


class DispatchFailure(PushServiceError):
  """Wraps an unexpected provider or store exception raised mid-dispatch."""

  error = "Push failed"

  def __init__(self, cause: BaseException) -> None:
    super().__init__(str(cause))
    self.cause = cause

  def to_payload(self, *, debug: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": self.error, "code": _coerce_json_safe(getattr(self.cause, "code", None)), "message": str(self.cause) or type(self.cause).__name__}
    if debug:
      # Provider error info and stack traces stay in the logs outside debug mode.
      payload["kind"] = type(self.cause).__name__
      payload["errorInfo"] = _coerce_json_safe(getattr(self.cause, "http_response", None))
      payload["stack"] = _format_stack(self.cause)
    return payload


def _format_stack(exc: BaseException) -> str:
  return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _with_request_id(payload: dict[str, Any], request: Request) -> dict[str, Any]:
  """Attach the request id so support can correlate client reports to server logs."""
  request_id = getattr(request.state, "request_id", None)
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Reject malformed optional fields (such as ``apns``) without echoing the request body."""
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s errors=%s", getattr(request.state, "request_id", None), request.url.path, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_with_request_id({"error": "Invalid request", "detail": sanitized_errors}, request))


async def push_service_exception_handler(request: Request, exc: PushServiceError) -> JSONResponse:
  """Render a taxonomy error, logging 5xx failures with their traceback."""
  settings = get_settings()
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    cause = getattr(exc, "cause", None) or exc.__cause__ or exc
    logger.error("%s request_id=%s path=%s error_type=%s", exc.error, request_id, request.url.path, type(cause).__name__, exc_info=(type(cause), cause, cause.__traceback__))
  elif settings.log_http_4xx:
    logger.warning("Rejected request request_id=%s path=%s status_code=%s error=%s", request_id, request.url.path, exc.status_code, exc.error)

  return JSONResponse(status_code=exc.status_code, content=_with_request_id(exc.to_payload(debug=settings.debug), request))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
  """Render routing errors (404/405) with the same body shape as the push errors."""
  settings = get_settings()
  if settings.log_http_4xx:
    logger = logging.getLogger("uvicorn.error")
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", getattr(request.state, "request_id", None), request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_with_request_id({"error": exc.detail}, request), headers=getattr(exc, "headers", None))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_with_request_id({"error": "Internal Server Error"}, request))
