"""Presence-aware suppression of chat notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from google.cloud.firestore import Client as FirestoreClient

from app.notifications.contracts import SkipReason

logger = logging.getLogger(__name__)

PRESENCE_COLLECTION = "chatPresence"


@dataclass(frozen=True)
class PresenceDecision:
  skip: bool
  reason: SkipReason | None = None


class PresenceGate:
  """Skip a push when the recipient already has the sender's chat open.

  The marker is read once with no isolation against the send that follows, so a stale read
  can cause an unnecessary push or a missed one.
  """

  def __init__(self, client: FirestoreClient) -> None:
    self._client = client

  def check(self, recipient_id: str, sender_id: str) -> PresenceDecision:
    snapshot = self._client.collection(PRESENCE_COLLECTION).document(recipient_id).get()
    if not snapshot.exists:
      return PresenceDecision(skip=False)

    presence = snapshot.to_dict() or {}
    if presence.get("viewingChatWith") == sender_id:
      logger.info("Recipient %s is viewing chat with %s; skipping push", recipient_id, sender_id)
      return PresenceDecision(skip=True, reason=SkipReason.RECIPIENT_VIEWING_CHAT)

    return PresenceDecision(skip=False)
