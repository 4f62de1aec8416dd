"""Builds the multicast payload for a chat message notification."""

from __future__ import annotations

from typing import Any

from app.notifications.contracts import ApnsOverride, DispatchRequest, MessageKind, PushPayload

DEFAULT_TITLE = "New message"
DEFAULT_BODY = "New message"
IMAGE_BODY = "📷 Photo"
LOCATION_BODY = "📍 Location"
DEFAULT_CHAT_ID = "chat"
MESSAGE_TYPE = "new_message"

COLLAPSE_ID_HEADER = "apns-collapse-id"
THREAD_ID_KEY = "thread-id"


def sanitize_chat_id(raw: Any) -> str:
  """Strip ``<`` and ``>`` so the chat id is safe to use as an APNs collapse/thread id."""
  cleaned = str(raw or DEFAULT_CHAT_ID).replace("<", "").replace(">", "")
  return cleaned or DEFAULT_CHAT_ID


def _non_blank(value: Any) -> str | None:
  if isinstance(value, str) and value.strip():
    return value
  return None


def resolve_title(notification_title: Any) -> str:
  return _non_blank(notification_title) or DEFAULT_TITLE


def resolve_body(kind: MessageKind, text: Any) -> str:
  if kind is MessageKind.IMAGE:
    return IMAGE_BODY
  if kind is MessageKind.LOCATION:
    return LOCATION_BODY
  return _non_blank(text) or DEFAULT_BODY


class PayloadBuilder:
  """Assembles notification text, data and the APNs configuration for one dispatch."""

  def build(self, request: DispatchRequest, *, sender_id: str, tokens: list[str], unread_count: int) -> PushPayload:
    title = resolve_title(request.notification_title)
    body = resolve_body(request.kind, request.text)
    safe_chat_id = sanitize_chat_id(request.chat_id)

    headers: dict[str, str] = {COLLAPSE_ID_HEADER: safe_chat_id}
    aps: dict[str, Any] = {"alert": {"title": title, "body": body}, "sound": "default", THREAD_ID_KEY: safe_chat_id, "badge": unread_count}
    custom: dict[str, Any] = {}
    if request.apns is not None:
      headers, aps, custom = _apply_override(request.apns, headers=headers, aps=aps)

    return PushPayload(
      tokens=list(tokens),
      title=title,
      body=body,
      data={"type": MESSAGE_TYPE, "partnerId": sender_id or "", "chatId": safe_chat_id},
      apns_headers=headers,
      aps=aps,
      apns_custom=custom,
    )


def _apply_override(override: ApnsOverride, *, headers: dict[str, str], aps: dict[str, Any]) -> tuple[dict[str, str], dict[str, Any], dict[str, Any]]:
  """Layer caller overrides onto computed defaults, one level deep per mapping."""
  # Header names are case-insensitive; lower-case them so an override replaces the computed header.
  merged_headers = {**headers, **{name.lower(): value for name, value in override.headers.items()}}
  merged_aps = {key: value for key, value in {**aps, **override.aps}.items() if value is not None}
  custom = {key: value for key, value in override.custom.items() if key != "aps"}

  # Identifiers are sanitized again so overrides cannot reintroduce markup characters.
  if COLLAPSE_ID_HEADER in merged_headers:
    merged_headers[COLLAPSE_ID_HEADER] = sanitize_chat_id(merged_headers[COLLAPSE_ID_HEADER])
  if THREAD_ID_KEY in merged_aps:
    merged_aps[THREAD_ID_KEY] = sanitize_chat_id(merged_aps[THREAD_ID_KEY])

  return merged_headers, merged_aps, custom
