"""Classification and cleanup of permanently invalid device tokens."""

from __future__ import annotations

import logging
import re

from app.notifications.contracts import TokenOutcome, TokenRepository

logger = logging.getLogger(__name__)

PERMANENT_INVALID_PATTERNS = (
  re.compile(r"registration-token-not-registered", re.IGNORECASE),
  re.compile(r"invalid-registration-token", re.IGNORECASE),
  re.compile(r"unregistered", re.IGNORECASE),
)


def is_permanent_invalid(error_code: str | None) -> bool:
  """Return whether a provider error code means the token will never work again."""
  code = error_code or ""
  return any(pattern.search(code) for pattern in PERMANENT_INVALID_PATTERNS)


class TokenPruner:
  """Removes tokens the provider reported as unregistered or malformed."""

  def __init__(self, token_store: TokenRepository) -> None:
    self._token_store = token_store

  def classify(self, outcomes: list[TokenOutcome], tokens: list[str]) -> list[str]:
    """Return the tokens whose failures are permanent; transient failures are left alone."""
    invalid: list[str] = []
    for index, outcome in enumerate(outcomes):
      if outcome.success or not is_permanent_invalid(outcome.error_code):
        continue
      invalid.append(tokens[index])
    return invalid

  def prune(self, uid: str, invalid_tokens: list[str]) -> bool:
    """Prune tokens, reporting failure through the return value instead of raising."""
    try:
      self._token_store.prune(uid, invalid_tokens)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to clean invalid tokens for user %s: %s", uid, exc, exc_info=True)
      return False
    return True
