"""Route that fans a new chat message out to the recipient's devices."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from app.api.deps import get_authenticated_sender, get_dispatch_service
from app.core.exceptions import REQUIRED_DISPATCH_FIELDS, InvalidRequest
from app.core.security import AuthenticatedSender
from app.notifications.contracts import DispatchSkipped
from app.notifications.service import DispatchService
from app.schema.push import DispatchRequestBody, DispatchResponse, SkippedResponse

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_json_object(request: Request) -> dict[str, Any]:
  """Parse the request body, treating malformed or non-object JSON as an empty body."""
  try:
    body = await request.json()
  except ValueError:
    return {}
  return body if isinstance(body, dict) else {}


@router.get("/push")
async def push_usage() -> dict[str, Any]:
  """Liveness and usage hint for the push endpoint."""
  return {"ok": True, "hint": "Use POST with JSON body and Authorization: Bearer <ID token>."}


@router.post("/push")
async def send_chat_push(
  request: Request,
  sender: AuthenticatedSender = Depends(get_authenticated_sender),  # noqa: B008
  service: DispatchService = Depends(get_dispatch_service),  # noqa: B008
) -> dict[str, Any]:
  """Notify ``partnerId`` about a new message from the authenticated sender.

  Returns a skip marker when the recipient is viewing the chat or has no devices,
  otherwise the per-token delivery results and the tokens pruned as invalid.
  """
  body = await _read_json_object(request)
  missing = [name for name in REQUIRED_DISPATCH_FIELDS if not body.get(name)]
  if missing:
    raise InvalidRequest(missing)

  try:
    payload = DispatchRequestBody.model_validate(body)
  except ValidationError as exc:
    raise RequestValidationError(exc.errors()) from exc

  outcome = await service.dispatch(payload.to_request(), sender_id=sender.uid)
  if isinstance(outcome, DispatchSkipped):
    return SkippedResponse.from_skip(outcome).model_dump()

  response = DispatchResponse.from_result(outcome)
  logger.info("Push dispatched to %s success=%d failure=%d invalidated=%d", payload.partner_id, response.success_count, response.failure_count, len(response.invalidated_tokens))
  return response.model_dump(by_alias=True, exclude_none=True)
