"""Chat message notification dispatch."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from starlette.concurrency import run_in_threadpool

from app.core.exceptions import DispatchFailure
from app.notifications.contracts import DispatchRequest, DispatchResult, DispatchSkipped, PushSender, SkipReason, TokenRepository
from app.notifications.payload import PayloadBuilder, sanitize_chat_id
from app.notifications.presence import PresenceGate
from app.notifications.pruner import TokenPruner
from app.notifications.unread import UnreadCounter

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _best_effort(label: str, func: Callable[..., T], *args: object, default: T) -> T:
  """Run a secondary lookup, falling back to ``default`` when it fails."""
  try:
    return await run_in_threadpool(func, *args)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Failed to compute %s: %s", label, exc)
    return default


class DispatchService:
  """Runs the dispatch pipeline for one new chat message.

  Presence and token lookups may end the dispatch early with a skip. Unread counting and
  token pruning are best-effort and never fail the request. Any other exception raised
  before the send completes is wrapped in ``DispatchFailure``.
  """

  def __init__(self, *, presence_gate: PresenceGate, token_store: TokenRepository, unread_counter: UnreadCounter, payload_builder: PayloadBuilder, push_sender: PushSender, token_pruner: TokenPruner) -> None:
    self._presence_gate = presence_gate
    self._token_store = token_store
    self._unread_counter = unread_counter
    self._payload_builder = payload_builder
    self._push_sender = push_sender
    self._token_pruner = token_pruner

  async def dispatch(self, request: DispatchRequest, *, sender_id: str) -> DispatchSkipped | DispatchResult:
    try:
      # Skip when the recipient has this chat open.
      presence = await run_in_threadpool(self._presence_gate.check, request.partner_id, sender_id)
      if presence.skip:
        return DispatchSkipped(reason=presence.reason or SkipReason.RECIPIENT_VIEWING_CHAT)

      # Resolve device tokens; none means nothing to send.
      tokens = await run_in_threadpool(self._token_store.resolve, request.partner_id)
      if not tokens:
        logger.info("No device tokens for recipient %s; skipping push", request.partner_id)
        return DispatchSkipped(reason=SkipReason.NO_TOKENS)

      # Badge count is advisory and falls back to 0.
      unread_count = await _best_effort("unreadCount", self._unread_counter.compute, sanitize_chat_id(request.chat_id), sender_id, request.partner_id, default=0)
      payload = self._payload_builder.build(request, sender_id=sender_id, tokens=tokens, unread_count=unread_count)
      # Per-token failures come back as outcomes; only request-level errors raise.
      delivery = await run_in_threadpool(self._push_sender.send_multicast, payload)
    except Exception as exc:
      raise DispatchFailure(exc) from exc

    # Only permanently invalid tokens are removed; transient failures are just reported.
    invalid_tokens = self._token_pruner.classify(delivery.outcomes, tokens)
    if invalid_tokens:
      await run_in_threadpool(self._token_pruner.prune, request.partner_id, invalid_tokens)

    return DispatchResult(delivery=delivery, invalidated_tokens=invalid_tokens)
