"""Approximate unread-badge computation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore import FieldFilter, Query

CHATS_COLLECTION = "chats"
MESSAGES_COLLECTION = "messages"

# Only the most recent sender messages are scanned; older unread messages are not counted.
UNREAD_SCAN_LIMIT = 500


def count_unread(messages: Iterable[Mapping[str, Any]], recipient_id: str) -> int:
  """Count messages that are not deleted and not yet read by ``recipient_id``."""
  count = 0
  for message in messages:
    if message.get("deleted") is True:
      continue
    read_by = message.get("readBy")
    if not isinstance(read_by, list) or recipient_id not in read_by:
      count += 1
  return count


class UnreadCounter:
  """Counts the sender's messages the recipient has not read, for the APNs badge.

  The count is bounded by ``scan_limit``: a sender with more unread messages than that in
  one chat produces an undercount.
  """

  def __init__(self, client: FirestoreClient, *, scan_limit: int = UNREAD_SCAN_LIMIT) -> None:
    self._client = client
    self._scan_limit = scan_limit

  def compute(self, chat_id: str, sender_id: str, recipient_id: str) -> int:
    query = (
      self._client.collection(CHATS_COLLECTION)
      .document(chat_id)
      .collection(MESSAGES_COLLECTION)
      .where(filter=FieldFilter("senderId", "==", sender_id))
      .order_by("timestamp", direction=Query.DESCENDING)
      .limit(self._scan_limit)
    )
    return count_unread((snapshot.to_dict() or {} for snapshot in query.stream()), recipient_id)
