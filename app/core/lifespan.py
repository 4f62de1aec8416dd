import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from app.config import get_settings
from app.core.exceptions import BackendInitFailure
from app.core.firebase import initialize_firebase, reset_firebase
from app.core.logging import _initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and warm the Firebase backends before serving requests."""
  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  _initialize_logging(settings)
  logger.info("Startup environment=%s debug=%s dry_run=%s", settings.environment, settings.debug, settings.push_dry_run)

  try:
    await run_in_threadpool(initialize_firebase, settings)
  except BackendInitFailure:
    # Keep serving: each push request retries initialization and reports a 500 until it succeeds.
    logger.warning("Firebase initialization failed at startup; will retry on first request.", exc_info=True)

  yield

  reset_firebase()
