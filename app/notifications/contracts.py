"""Contracts shared by the chat push dispatch pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class MessageKind(str, Enum):
  """Kind of chat message that triggered the notification."""

  TEXT = "text"
  IMAGE = "image"
  LOCATION = "location"
  OTHER = "other"

  @classmethod
  def parse(cls, raw: Any) -> MessageKind:
    """Map a client-supplied kind onto a known member, defaulting to ``OTHER``."""
    try:
      return cls(str(raw).strip().lower())
    except ValueError:
      return cls.OTHER


class SkipReason(str, Enum):
  """Why a dispatch finished without sending anything."""

  RECIPIENT_VIEWING_CHAT = "recipient_viewing_chat"
  NO_TOKENS = "no_tokens"


@dataclass(frozen=True)
class ApnsOverride:
  """Caller-supplied APNs overrides, merged shallowly onto the computed defaults.

  Each mapping replaces matching keys one level deep: ``headers`` over the APNs headers,
  ``aps`` over the ``aps`` dictionary and ``custom`` over the top-level payload keys. Nested
  values such as ``aps["alert"]`` are replaced wholesale, so overriding one alert subfield
  requires resupplying its siblings. A ``None`` value in ``aps`` removes the computed key.
  """

  headers: dict[str, str] = field(default_factory=dict)
  aps: dict[str, Any] = field(default_factory=dict)
  custom: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchRequest:
  """A validated request to notify ``partner_id`` about a new message in ``chat_id``."""

  partner_id: str
  chat_id: str
  kind: MessageKind
  text: str | None = None
  notification_title: str | None = None
  apns: ApnsOverride | None = None


@dataclass(frozen=True)
class PushPayload:
  """A fully built multicast notification ready for delivery."""

  tokens: list[str]
  title: str
  body: str
  data: dict[str, str]
  apns_headers: dict[str, str]
  aps: dict[str, Any]
  apns_custom: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenOutcome:
  """Delivery result for one device token."""

  token: str
  success: bool
  error_code: str | None = None
  error_message: str | None = None
  message_id: str | None = None


@dataclass(frozen=True)
class MulticastResult:
  """Per-token outcomes of one multicast send, index-aligned with the payload tokens."""

  outcomes: list[TokenOutcome]

  @property
  def success_count(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.success)

  @property
  def failure_count(self) -> int:
    return sum(1 for outcome in self.outcomes if not outcome.success)


@dataclass(frozen=True)
class DispatchSkipped:
  """Dispatch ended early without error."""

  reason: SkipReason


@dataclass(frozen=True)
class DispatchResult:
  """Dispatch completed a send; partial token failures are embedded in ``delivery``."""

  delivery: MulticastResult
  invalidated_tokens: list[str]


class TokenRepository(Protocol):
  """Device-token bookkeeping for a user."""

  def resolve(self, uid: str) -> list[str]:
    """Return the user's distinct, non-blank device tokens."""

  def prune(self, uid: str, invalid_tokens: list[str]) -> None:
    """Atomically remove the given tokens from the user's token fields."""


class PushSender(Protocol):
  """Delivery contract for multicast push notifications."""

  def send_multicast(self, payload: PushPayload) -> MulticastResult:
    """Send one batched request and return outcomes in token order."""
