"""Shared FastAPI dependencies for backend access and caller authentication."""

from __future__ import annotations

from fastapi import Depends, Header
from starlette.concurrency import run_in_threadpool

from app.config import get_settings
from app.core.firebase import FirebaseBackends, FirebaseIdentityVerifier, initialize_firebase
from app.core.security import AuthenticatedSender, IdentityVerifier, authenticate
from app.notifications.factory import build_dispatch_service
from app.notifications.service import DispatchService


async def get_backends() -> FirebaseBackends:
  """Return the shared Firebase handles, initializing them on first use."""
  return await run_in_threadpool(initialize_firebase, get_settings())


async def get_identity_verifier(backends: FirebaseBackends = Depends(get_backends)) -> IdentityVerifier:  # noqa: B008
  return FirebaseIdentityVerifier(backends.app, check_revoked=get_settings().auth_check_revoked)


async def get_authenticated_sender(
  authorization: str | None = Header(default=None),
  x_api_key: str | None = Header(default=None),
  verifier: IdentityVerifier = Depends(get_identity_verifier),  # noqa: B008
) -> AuthenticatedSender:
  """Verify the Firebase ID token in the Authorization header."""
  return await run_in_threadpool(authenticate, authorization, verifier, has_api_key=bool(x_api_key))


async def get_dispatch_service(backends: FirebaseBackends = Depends(get_backends)) -> DispatchService:  # noqa: B008
  return build_dispatch_service(get_settings(), backends)
