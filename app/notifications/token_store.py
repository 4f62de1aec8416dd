"""Firestore-backed device token resolution and pruning."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Mapping
from typing import Any, TypeVar

from google.cloud.firestore import DELETE_FIELD, Transaction, transactional
from google.cloud.firestore import Client as FirestoreClient

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
TOKENS_FIELD = "fcmTokens"
LEGACY_TOKEN_FIELD = "fcmToken"

T = TypeVar("T")
TransactionRunner = Callable[[FirestoreClient, Callable[[Transaction], T], int], T]


def tokens_from_user_fields(data: Mapping[str, Any]) -> list[str]:
  """Merge the token array with the legacy single-token field.

  The array comes first, the legacy token is appended only when it is not already present,
  and anything that is not a non-blank string is dropped.
  """
  raw_tokens = data.get(TOKENS_FIELD)
  tokens = list(raw_tokens) if isinstance(raw_tokens, list) else []
  legacy_token = data.get(LEGACY_TOKEN_FIELD)
  if isinstance(legacy_token, str) and legacy_token not in tokens:
    tokens.append(legacy_token)

  resolved: list[str] = []
  for token in tokens:
    if isinstance(token, str) and token.strip() and token not in resolved:
      resolved.append(token)
  return resolved


def build_prune_update(data: Mapping[str, Any], invalid_tokens: Collection[str]) -> dict[str, Any]:
  """Return the merge-update that removes ``invalid_tokens`` from a user document."""
  raw_tokens = data.get(TOKENS_FIELD)
  current = raw_tokens if isinstance(raw_tokens, list) else []
  update: dict[str, Any] = {TOKENS_FIELD: [token for token in current if not (isinstance(token, str) and token in invalid_tokens)]}
  legacy_token = data.get(LEGACY_TOKEN_FIELD)
  if isinstance(legacy_token, str) and legacy_token in invalid_tokens:
    update[LEGACY_TOKEN_FIELD] = DELETE_FIELD
  return update


def run_in_transaction(client: FirestoreClient, callback: Callable[[Transaction], T], max_attempts: int) -> T:
  """Run ``callback`` inside a Firestore transaction that retries on contention."""
  transaction = client.transaction(max_attempts=max_attempts)
  return transactional(callback)(transaction)


class FirestoreTokenStore:
  """Reads and prunes the FCM tokens stored on ``users/{uid}``."""

  def __init__(self, client: FirestoreClient, *, max_attempts: int = 5, transaction_runner: TransactionRunner | None = None) -> None:
    self._client = client
    self._max_attempts = max_attempts
    self._run_in_transaction = transaction_runner or run_in_transaction

  def resolve(self, uid: str) -> list[str]:
    """Return the user's distinct device tokens, or an empty list for unknown users."""
    snapshot = self._client.collection(USERS_COLLECTION).document(uid).get()
    if not snapshot.exists:
      return []
    return tokens_from_user_fields(snapshot.to_dict() or {})

  def prune(self, uid: str, invalid_tokens: list[str]) -> None:
    """Remove ``invalid_tokens`` in one read-modify-write transaction.

    The document is re-read inside the transaction, so a token registered concurrently is
    kept: a conflicting write aborts the commit and the store retries against fresh data.
    """
    if not invalid_tokens:
      return

    invalid = frozenset(invalid_tokens)
    user_ref = self._client.collection(USERS_COLLECTION).document(uid)

    def _prune(transaction: Transaction) -> None:
      snapshot = user_ref.get(transaction=transaction)
      if not snapshot.exists:
        return
      transaction.set(user_ref, build_prune_update(snapshot.to_dict() or {}, invalid), merge=True)

    self._run_in_transaction(self._client, _prune, self._max_attempts)
    logger.info("Pruned %d invalid token(s) for user %s", len(invalid), uid)
