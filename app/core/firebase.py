"""Process-wide Firebase backend registry.

The Firebase app and Firestore client are created once, on first use, and shared by every
request afterwards. Initialization is idempotent: once it has succeeded, later calls return
the same handles. A failed attempt is not cached, so the next request retries.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials, firestore
from google.cloud.firestore import Client as FirestoreClient

from app.config import Settings, get_settings
from app.core.exceptions import BackendInitFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FirebaseBackends:
  """Handles to the Firebase services used by the push pipeline."""

  app: firebase_admin.App
  firestore: FirestoreClient


_backends: FirebaseBackends | None = None
_backends_lock = threading.Lock()


def initialize_firebase(settings: Settings | None = None) -> FirebaseBackends:
  """Initialize the Firebase Admin SDK and Firestore client at most once per process."""
  global _backends
  if _backends is not None:
    return _backends

  with _backends_lock:
    if _backends is None:
      _backends = _build_backends(settings or get_settings())
  return _backends


def reset_firebase() -> None:
  """Forget cached handles so the next call re-initializes (used at shutdown and in tests)."""
  global _backends
  with _backends_lock:
    _backends = None


def _build_backends(settings: Settings) -> FirebaseBackends:
  try:
    if firebase_admin._apps:
      # Another component already initialized the default app; reuse it.
      app = firebase_admin.get_app()
    else:
      app = firebase_admin.initialize_app(_load_credential(settings), _app_options(settings))
    client = firestore.client(app=app)
  except BackendInitFailure:
    raise
  except Exception as exc:
    logger.error("Failed to initialize Firebase Admin SDK: %s", exc)
    raise BackendInitFailure("Firebase initialization failed") from exc

  logger.info("Firebase Admin SDK initialized for project: %s", app.project_id or "<unknown>")
  return FirebaseBackends(app=app, firestore=client)


def _load_credential(settings: Settings) -> credentials.Base:
  """Resolve credentials from inline JSON, a key file, or application default credentials."""
  if settings.firebase_service_account:
    try:
      # Escaped newlines in the private key survive json.loads as real newlines.
      info = json.loads(settings.firebase_service_account)
    except json.JSONDecodeError as exc:
      raise BackendInitFailure("FIREBASE_SERVICE_ACCOUNT is not valid JSON") from exc
    return credentials.Certificate(info)

  if settings.firebase_service_account_json_path:
    return credentials.Certificate(settings.firebase_service_account_json_path)

  if settings.firebase_project_id:
    return credentials.ApplicationDefault()

  missing = RuntimeError("FIREBASE_SERVICE_ACCOUNT missing")
  raise BackendInitFailure("Firebase credentials are not configured") from missing


def _app_options(settings: Settings) -> dict[str, Any] | None:
  if settings.firebase_project_id:
    return {"projectId": settings.firebase_project_id}
  return None


class FirebaseIdentityVerifier:
  """Verifies Firebase ID tokens against a specific Firebase app."""

  def __init__(self, app: firebase_admin.App, *, check_revoked: bool = False) -> None:
    self._app = app
    self._check_revoked = check_revoked

  def verify(self, id_token: str) -> dict[str, Any]:
    """Return the decoded claims, raising the SDK's auth error on failure."""
    return auth.verify_id_token(id_token, app=self._app, check_revoked=self._check_revoked)
