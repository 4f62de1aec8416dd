"""Request and response models for the chat push endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.notifications.contracts import ApnsOverride, DispatchRequest, DispatchResult, DispatchSkipped, MessageKind


def _to_camel(string: str) -> str:
  """Convert snake_case to camelCase so the API accepts mobile-client payloads."""
  parts = string.split("_")
  if not parts:
    return string
  return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


class ApnsPayloadOverride(BaseModel):
  """Overrides for the APNs payload: ``aps`` keys plus arbitrary top-level custom keys."""

  model_config = ConfigDict(extra="allow")
  aps: dict[str, Any] | None = None

  @field_validator("aps")
  @classmethod
  def check_aps_types(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
    # The FCM SDK only rejects these at send time; reject them here as a client error instead.
    if value is None:
      return value
    thread_id = value.get("thread-id")
    if isinstance(thread_id, int | float) and not isinstance(thread_id, bool):
      value["thread-id"] = str(thread_id)
    elif thread_id is not None and not isinstance(thread_id, str):
      raise ValueError("aps.thread-id must be a string")
    badge = value.get("badge")
    if badge is not None and (isinstance(badge, bool) or not isinstance(badge, int)):
      raise ValueError("aps.badge must be an integer")
    return value


class ApnsOverrideBody(BaseModel):
  model_config = ConfigDict(extra="ignore")
  headers: dict[str, str] | None = None
  payload: ApnsPayloadOverride | None = None

  @field_validator("headers", mode="before")
  @classmethod
  def stringify_headers(cls, value: Any) -> Any:
    # APNs headers are strings on the wire; clients often send apns-priority as a number.
    if isinstance(value, dict):
      return {str(key): str(item) for key, item in value.items() if item is not None}
    return value

  def to_override(self) -> ApnsOverride:
    payload = self.payload
    return ApnsOverride(headers=dict(self.headers or {}), aps=dict(payload.aps or {}) if payload else {}, custom=dict(payload.model_extra or {}) if payload else {})


class DispatchRequestBody(BaseModel):
  """JSON body of ``POST /api/push``; required fields are checked before validation."""

  model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=_to_camel)
  partner_id: str
  chat_id: str
  kind: MessageKind
  text: str | None = None
  notification_title: str | None = None
  apns: ApnsOverrideBody | None = None

  @field_validator("partner_id", "chat_id", mode="before")
  @classmethod
  def stringify_ids(cls, value: Any) -> Any:
    if isinstance(value, int | float) and not isinstance(value, bool):
      return str(value)
    return value

  @field_validator("kind", mode="before")
  @classmethod
  def parse_kind(cls, value: Any) -> MessageKind:
    return MessageKind.parse(value)

  @field_validator("text", "notification_title", mode="before")
  @classmethod
  def drop_non_strings(cls, value: Any) -> str | None:
    # Non-string values are treated as absent so the default text applies.
    return value if isinstance(value, str) else None

  def to_request(self) -> DispatchRequest:
    return DispatchRequest(partner_id=self.partner_id, chat_id=self.chat_id, kind=self.kind, text=self.text, notification_title=self.notification_title, apns=self.apns.to_override() if self.apns else None)


class TokenError(BaseModel):
  code: str | None = None
  message: str | None = None


class TokenResult(BaseModel):
  token: str
  success: bool
  error: TokenError | None = None


class DispatchResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)
  ok: bool = True
  success_count: int
  failure_count: int
  invalidated_tokens: list[str] = Field(default_factory=list)
  results: list[TokenResult] = Field(default_factory=list)

  @classmethod
  def from_result(cls, result: DispatchResult) -> DispatchResponse:
    delivery = result.delivery
    results = [TokenResult(token=outcome.token, success=outcome.success, error=None if outcome.success else TokenError(code=outcome.error_code, message=outcome.error_message)) for outcome in delivery.outcomes]
    return cls(success_count=delivery.success_count, failure_count=delivery.failure_count, invalidated_tokens=list(result.invalidated_tokens), results=results)


class SkippedResponse(BaseModel):
  skipped: bool = True
  reason: str

  @classmethod
  def from_skip(cls, skipped: DispatchSkipped) -> SkippedResponse:
    return cls(reason=skipped.reason.value)
