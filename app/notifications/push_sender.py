"""Firebase Cloud Messaging multicast delivery."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

import firebase_admin
from firebase_admin import exceptions, messaging

from app.notifications.contracts import MulticastResult, PushPayload, TokenOutcome

logger = logging.getLogger(__name__)

# FCM rejects multicast messages addressed to more than 500 tokens.
MULTICAST_TOKEN_LIMIT = 500

# Python SDK exception types mapped onto the provider's stable string error codes.
_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
  (messaging.UnregisteredError, "messaging/registration-token-not-registered"),
  (messaging.SenderIdMismatchError, "messaging/mismatched-credential"),
  (messaging.QuotaExceededError, "messaging/message-rate-exceeded"),
  (messaging.ThirdPartyAuthError, "messaging/third-party-auth-error"),
  (exceptions.UnavailableError, "messaging/server-unavailable"),
  (exceptions.InternalError, "messaging/internal-error"),
  (exceptions.UnauthenticatedError, "messaging/authentication-error"),
)

_ALERT_FIELDS = {
  "title": "title",
  "subtitle": "subtitle",
  "body": "body",
  "loc-key": "loc_key",
  "loc-args": "loc_args",
  "title-loc-key": "title_loc_key",
  "title-loc-args": "title_loc_args",
  "action-loc-key": "action_loc_key",
  "launch-image": "launch_image",
}
_APS_FIELDS = {"alert", "badge", "sound", "content-available", "mutable-content", "category", "thread-id"}


def provider_error_code(exc: BaseException | None) -> str:
  """Return the provider error code string for a per-token send exception."""
  for error_type, code in _ERROR_CODES:
    if isinstance(exc, error_type):
      return code
  if isinstance(exc, exceptions.InvalidArgumentError):
    if "registration token" in str(exc).lower():
      return "messaging/invalid-registration-token"
    return "messaging/invalid-argument"
  if isinstance(exc, exceptions.FirebaseError) and exc.code:
    return f"messaging/{str(exc.code).lower().replace('_', '-')}"
  return "messaging/unknown-error"


def _build_alert(alert: Any) -> messaging.ApsAlert | str | None:
  if not isinstance(alert, dict):
    return alert
  known = {attr: alert[key] for key, attr in _ALERT_FIELDS.items() if key in alert}
  extra = {key: value for key, value in alert.items() if key not in _ALERT_FIELDS}
  return messaging.ApsAlert(custom_data=extra or None, **known)


def _build_sound(sound: Any) -> messaging.CriticalSound | str | None:
  if not isinstance(sound, dict):
    return sound
  return messaging.CriticalSound(name=sound.get("name", "default"), critical=sound.get("critical"), volume=sound.get("volume"))


def _flag(value: Any) -> bool | None:
  return None if value is None else bool(value)


def build_aps(aps: dict[str, Any]) -> messaging.Aps:
  """Translate an ``aps`` dictionary into the SDK type, keeping unknown keys as custom data."""
  custom_data = {key: value for key, value in aps.items() if key not in _APS_FIELDS}
  return messaging.Aps(
    alert=_build_alert(aps.get("alert")),
    badge=aps.get("badge"),
    sound=_build_sound(aps.get("sound")),
    content_available=_flag(aps.get("content-available")),
    mutable_content=_flag(aps.get("mutable-content")),
    category=aps.get("category"),
    thread_id=aps.get("thread-id"),
    custom_data=custom_data or None,
  )


def build_multicast_message(payload: PushPayload) -> messaging.MulticastMessage:
  """Build the SDK multicast message for a payload."""
  return messaging.MulticastMessage(
    tokens=list(payload.tokens),
    notification=messaging.Notification(title=payload.title, body=payload.body),
    data=dict(payload.data),
    apns=messaging.APNSConfig(headers=dict(payload.apns_headers), payload=messaging.APNSPayload(aps=build_aps(payload.aps), **payload.apns_custom)),
  )


class FcmPushSender:
  """`firebase_admin.messaging` backed multicast sender."""

  def __init__(self, *, app: firebase_admin.App | None = None, dry_run: bool = False) -> None:
    self._app = app
    self._dry_run = dry_run

  def send_multicast(self, payload: PushPayload) -> MulticastResult:
    """Send one batched request; per-token failures are returned, never raised."""
    outcomes: list[TokenOutcome] = []
    for start in range(0, len(payload.tokens), MULTICAST_TOKEN_LIMIT):
      # Every batch carries the same notification, only the token slice differs.
      batch = replace(payload, tokens=payload.tokens[start : start + MULTICAST_TOKEN_LIMIT])
      response = messaging.send_each_for_multicast(build_multicast_message(batch), dry_run=self._dry_run, app=self._app)
      # The SDK guarantees responses[i] belongs to tokens[i].
      for token, send_response in zip(batch.tokens, response.responses, strict=True):
        if send_response.success:
          outcomes.append(TokenOutcome(token=token, success=True, message_id=send_response.message_id))
          continue
        # The SDK raises typed exceptions; map them back onto provider error codes.
        error = send_response.exception
        outcomes.append(TokenOutcome(token=token, success=False, error_code=provider_error_code(error), error_message=str(error) if error else None))

    # Counts only; device tokens stay out of the logs.
    result = MulticastResult(outcomes=outcomes)
    logger.info("Multicast sent tokens=%d success=%d failure=%d dry_run=%s", len(outcomes), result.success_count, result.failure_count, self._dry_run)
    return result
