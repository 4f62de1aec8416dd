from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from app.core.exceptions import DispatchFailure
from app.notifications.contracts import DispatchRequest, DispatchResult, DispatchSkipped, MessageKind, MulticastResult, SkipReason, TokenOutcome
from app.notifications.payload import PayloadBuilder
from app.notifications.presence import PresenceGate
from app.notifications.pruner import TokenPruner
from app.notifications.service import DispatchService
from app.notifications.token_store import FirestoreTokenStore

NOT_REGISTERED = "messaging/registration-token-not-registered"


def _request(**overrides) -> DispatchRequest:
  fields = {"partner_id": "recipient", "chat_id": "chat-1", "kind": MessageKind.TEXT, "text": "hello"}
  fields.update(overrides)
  return DispatchRequest(**fields)


def _sender_returning(*outcomes: TokenOutcome) -> MagicMock:
  sender = MagicMock()
  sender.send_multicast.return_value = MulticastResult(outcomes=list(outcomes))
  return sender


def _service(fake_firestore, transaction_runner, *, sender=None, unread=None, pruner=None) -> DispatchService:
  token_store = FirestoreTokenStore(fake_firestore, transaction_runner=transaction_runner)
  if unread is None:
    unread = MagicMock()
    unread.compute.return_value = 1
  return DispatchService(
    presence_gate=PresenceGate(fake_firestore),
    token_store=token_store,
    unread_counter=unread,
    payload_builder=PayloadBuilder(),
    push_sender=sender or _sender_returning(),
    token_pruner=pruner or TokenPruner(token_store),
  )


@pytest.mark.anyio
async def test_dispatch_skips_when_recipient_is_viewing_chat(fake_firestore, transaction_runner):
  fake_firestore.seed("chatPresence/recipient", {"viewingChatWith": "sender"})
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  sender = _sender_returning()

  outcome = await _service(fake_firestore, transaction_runner, sender=sender).dispatch(_request(), sender_id="sender")

  assert outcome == DispatchSkipped(reason=SkipReason.RECIPIENT_VIEWING_CHAT)
  sender.send_multicast.assert_not_called()


@pytest.mark.anyio
async def test_dispatch_sends_when_recipient_views_another_chat(fake_firestore, transaction_runner):
  fake_firestore.seed("chatPresence/recipient", {"viewingChatWith": "someone-else"})
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  sender = _sender_returning(TokenOutcome(token="t1", success=True, message_id="m1"))

  outcome = await _service(fake_firestore, transaction_runner, sender=sender).dispatch(_request(), sender_id="sender")

  assert isinstance(outcome, DispatchResult)
  sender.send_multicast.assert_called_once()


@pytest.mark.anyio
async def test_dispatch_skips_recipient_without_tokens(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": [], "fcmToken": "  "})
  sender = _sender_returning()

  outcome = await _service(fake_firestore, transaction_runner, sender=sender).dispatch(_request(), sender_id="sender")

  assert outcome == DispatchSkipped(reason=SkipReason.NO_TOKENS)
  sender.send_multicast.assert_not_called()


@pytest.mark.anyio
async def test_dispatch_reports_partial_failures_and_prunes_only_permanent_ones(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["A", "B", "C"]})
  sender = _sender_returning(
    TokenOutcome(token="A", success=True, message_id="m1"),
    TokenOutcome(token="B", success=False, error_code=NOT_REGISTERED, error_message="gone"),
    TokenOutcome(token="C", success=False, error_code="messaging/internal-error", error_message="oops"),
  )

  outcome = await _service(fake_firestore, transaction_runner, sender=sender).dispatch(_request(), sender_id="sender")

  assert outcome.invalidated_tokens == ["B"]
  assert (outcome.delivery.success_count, outcome.delivery.failure_count) == (1, 2)
  assert fake_firestore.docs["users/recipient"]["fcmTokens"] == ["A", "C"]


@pytest.mark.anyio
async def test_dispatch_uses_zero_badge_when_unread_count_fails(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  unread = MagicMock()
  unread.compute.side_effect = RuntimeError("index missing")
  sender = _sender_returning(TokenOutcome(token="t1", success=True, message_id="m1"))

  outcome = await _service(fake_firestore, transaction_runner, sender=sender, unread=unread).dispatch(_request(), sender_id="sender")

  assert isinstance(outcome, DispatchResult)
  payload = sender.send_multicast.call_args.args[0]
  assert payload.aps["badge"] == 0


@pytest.mark.anyio
async def test_dispatch_counts_unread_in_sanitized_chat(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  unread = MagicMock()
  unread.compute.return_value = 7
  sender = _sender_returning(TokenOutcome(token="t1", success=True, message_id="m1"))

  await _service(fake_firestore, transaction_runner, sender=sender, unread=unread).dispatch(_request(chat_id="c<1>"), sender_id="sender")

  unread.compute.assert_called_once_with("c1", "sender", "recipient")
  assert sender.send_multicast.call_args.args[0].aps["badge"] == 7


@pytest.mark.anyio
async def test_dispatch_succeeds_when_pruning_fails(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["A"]})
  failing_store = MagicMock()
  failing_store.prune.side_effect = RuntimeError("contention")
  sender = _sender_returning(TokenOutcome(token="A", success=False, error_code=NOT_REGISTERED))

  outcome = await _service(fake_firestore, transaction_runner, sender=sender, pruner=TokenPruner(failing_store)).dispatch(_request(), sender_id="sender")

  assert outcome.invalidated_tokens == ["A"]
  failing_store.prune.assert_called_once_with("recipient", ["A"])
  assert fake_firestore.docs["users/recipient"]["fcmTokens"] == ["A"]


@pytest.mark.anyio
async def test_dispatch_wraps_unexpected_send_errors(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  sender = MagicMock()
  sender.send_multicast.side_effect = ConnectionError("provider down")

  with pytest.raises(DispatchFailure) as exc_info:
    await _service(fake_firestore, transaction_runner, sender=sender).dispatch(_request(), sender_id="sender")

  assert isinstance(exc_info.value.cause, ConnectionError)
  assert exc_info.value.to_payload(debug=False) == {"error": "Push failed", "code": None, "message": "provider down"}


@pytest.mark.anyio
async def test_repeated_dispatch_sends_again(fake_firestore, transaction_runner):
  fake_firestore.seed("users/recipient", {"fcmTokens": ["t1"]})
  sender = _sender_returning(TokenOutcome(token="t1", success=True, message_id="m1"))
  service = _service(fake_firestore, transaction_runner, sender=sender)

  await service.dispatch(_request(), sender_id="sender")
  await service.dispatch(_request(), sender_id="sender")

  assert sender.send_multicast.call_count == 2
