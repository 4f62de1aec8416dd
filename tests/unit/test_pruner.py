from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from app.notifications.contracts import TokenOutcome
from app.notifications.pruner import TokenPruner, is_permanent_invalid


@pytest.mark.parametrize(
  ("code", "expected"),
  [
    ("messaging/registration-token-not-registered", True),
    ("messaging/invalid-registration-token", True),
    ("UNREGISTERED", True),
    ("Messaging/Registration-Token-Not-Registered", True),
    ("messaging/internal-error", False),
    ("messaging/server-unavailable", False),
    ("", False),
    (None, False),
  ],
)
def test_is_permanent_invalid(code, expected):
  assert is_permanent_invalid(code) is expected


def test_classify_collects_only_permanent_failures():
  tokens = ["ok", "gone", "flaky", "bad"]
  outcomes = [
    TokenOutcome(token="ok", success=True),
    TokenOutcome(token="gone", success=False, error_code="messaging/registration-token-not-registered"),
    TokenOutcome(token="flaky", success=False, error_code="messaging/internal-error"),
    TokenOutcome(token="bad", success=False, error_code="messaging/invalid-registration-token"),
  ]

  assert TokenPruner(MagicMock()).classify(outcomes, tokens) == ["gone", "bad"]


def test_prune_delegates_to_token_store():
  store = MagicMock()

  assert TokenPruner(store).prune("u1", ["gone"]) is True
  store.prune.assert_called_once_with("u1", ["gone"])


def test_prune_reports_failure_without_raising():
  store = MagicMock()
  store.prune.side_effect = RuntimeError("contention")

  assert TokenPruner(store).prune("u1", ["gone"]) is False
