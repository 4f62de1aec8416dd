"""Shared fixtures: an in-memory Firestore with optimistic transactions and settings hygiene."""

from __future__ import annotations

import copy
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from google.cloud.firestore import DELETE_FIELD  # noqa: E402

from app.config import get_settings  # noqa: E402


class FakeSnapshot:
  def __init__(self, data: dict[str, Any] | None) -> None:
    self._data = copy.deepcopy(data)

  @property
  def exists(self) -> bool:
    return self._data is not None

  def to_dict(self) -> dict[str, Any] | None:
    return copy.deepcopy(self._data)


class FakeDocumentRef:
  def __init__(self, store: FakeFirestore, path: str) -> None:
    self._store = store
    self.path = path

  def get(self, transaction: FakeTransaction | None = None) -> FakeSnapshot:
    if transaction is not None:
      transaction.reads[self.path] = self._store.versions.get(self.path, 0)
    return FakeSnapshot(self._store.docs.get(self.path))

  def set(self, data: dict[str, Any], merge: bool = False) -> None:
    self._store.write(self.path, data, merge=merge)

  def collection(self, name: str) -> FakeCollection:
    return FakeCollection(self._store, f"{self.path}/{name}")


class FakeCollection:
  def __init__(self, store: FakeFirestore, path: str) -> None:
    self._store = store
    self.path = path

  def document(self, doc_id: str) -> FakeDocumentRef:
    return FakeDocumentRef(self._store, f"{self.path}/{doc_id}")


class FakeTransaction:
  def __init__(self, store: FakeFirestore) -> None:
    self._store = store
    self.reads: dict[str, int] = {}
    self.writes: list[tuple[str, dict[str, Any], bool]] = []

  def set(self, ref: FakeDocumentRef, data: dict[str, Any], merge: bool = False) -> None:
    self.writes.append((ref.path, data, merge))

  def commit(self) -> bool:
    """Apply buffered writes unless a document read in this transaction changed meanwhile."""
    while self._store.before_commit:
      self._store.before_commit.pop(0)()
    if any(self._store.versions.get(path, 0) != version for path, version in self.reads.items()):
      return False
    for path, data, merge in self.writes:
      self._store.write(path, data, merge=merge)
    return True


class FakeFirestore:
  """Just enough of the Firestore client surface for document reads and transactions."""

  def __init__(self) -> None:
    self.docs: dict[str, dict[str, Any]] = {}
    self.versions: dict[str, int] = {}
    self.before_commit: list[Callable[[], None]] = []
    self.transactions_started = 0

  def collection(self, name: str) -> FakeCollection:
    return FakeCollection(self, name)

  def transaction(self, max_attempts: int = 5) -> FakeTransaction:
    self.transactions_started += 1
    return FakeTransaction(self)

  def seed(self, path: str, data: dict[str, Any]) -> None:
    self.write(path, data, merge=False)

  def write(self, path: str, data: dict[str, Any], *, merge: bool) -> None:
    current = dict(self.docs.get(path, {})) if merge else {}
    for key, value in data.items():
      if value is DELETE_FIELD:
        current.pop(key, None)
      else:
        current[key] = copy.deepcopy(value)
    self.docs[path] = current
    self.versions[path] = self.versions.get(path, 0) + 1


def run_optimistic_transaction(client: FakeFirestore, callback: Callable[[FakeTransaction], Any], max_attempts: int) -> Any:
  """Retry-on-conflict runner with the same contract as ``token_store.run_in_transaction``."""
  for _attempt in range(max_attempts):
    transaction = client.transaction(max_attempts=max_attempts)
    result = callback(transaction)
    if transaction.commit():
      return result
  raise RuntimeError(f"Transaction aborted after {max_attempts} attempts")


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def fake_firestore() -> FakeFirestore:
  return FakeFirestore()


@pytest.fixture
def transaction_runner():
  return run_optimistic_transaction


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
  # Settings are cached per process; tests that tweak env vars need a fresh load.
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()
