from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from app.core.exceptions import Unauthenticated

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r"^Bearer (.+)$", re.IGNORECASE)


class IdentityVerifier(Protocol):
  """Verification contract for caller credentials."""

  def verify(self, id_token: str) -> dict[str, Any]:
    """Return decoded claims containing at least ``uid``, raising on rejection."""


@dataclass(frozen=True)
class AuthenticatedSender:
  """The verified caller of a dispatch request."""

  uid: str
  claims: dict[str, Any]


def extract_bearer_token(authorization: str | None, *, has_api_key: bool = False) -> str:
  """Pull the credential out of an ``Authorization: Bearer <token>`` header value."""
  match = _BEARER_RE.match(authorization) if isinstance(authorization, str) else None
  if match is None or not match.group(1).strip():
    # Callers sometimes send a legacy API key instead of an ID token; flag it in the error.
    raise Unauthenticated("missing_authorization_bearer", has_api_key=has_api_key)
  return match.group(1).strip()


def authenticate(authorization: str | None, verifier: IdentityVerifier, *, has_api_key: bool = False) -> AuthenticatedSender:
  """Verify the caller's bearer credential and return the sender identity."""
  id_token = extract_bearer_token(authorization, has_api_key=has_api_key)
  try:
    decoded_claims = verifier.verify(id_token)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Token verification failed: %s", exc)
    raise Unauthenticated("invalid_id_token", details=str(exc) or type(exc).__name__) from exc

  uid = decoded_claims.get("uid") if isinstance(decoded_claims, dict) else None
  if not uid:
    raise Unauthenticated("invalid_id_token", details="Token claims missing uid")

  return AuthenticatedSender(uid=str(uid), claims=decoded_claims)
