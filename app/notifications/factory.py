"""Factory helpers for the dispatch service."""

from __future__ import annotations

from app.config import Settings
from app.core.firebase import FirebaseBackends
from app.notifications.payload import PayloadBuilder
from app.notifications.presence import PresenceGate
from app.notifications.pruner import TokenPruner
from app.notifications.push_sender import FcmPushSender
from app.notifications.service import DispatchService
from app.notifications.token_store import FirestoreTokenStore
from app.notifications.unread import UnreadCounter


def build_dispatch_service(settings: Settings, backends: FirebaseBackends) -> DispatchService:
  """Wire the dispatch pipeline against the shared Firebase handles."""
  # The pruner shares the store so cleanup uses the same transaction settings.
  token_store = FirestoreTokenStore(backends.firestore, max_attempts=settings.prune_max_attempts)
  return DispatchService(
    presence_gate=PresenceGate(backends.firestore),
    token_store=token_store,
    unread_counter=UnreadCounter(backends.firestore),
    payload_builder=PayloadBuilder(),
    push_sender=FcmPushSender(app=backends.app, dry_run=settings.push_dry_run),
    token_pruner=TokenPruner(token_store),
  )
