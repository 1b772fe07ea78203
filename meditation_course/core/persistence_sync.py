"""
Persistence Sync

Keeps the local ProgressStore consistent with the remote progress API.
Every local write is submitted, then the full remote list is fetched and
replaces the local projection. Remote records older than a write still in
flight are stale and lose to the local record. Level test markers are
fetched alongside and merged, since first mastery never moves.
"""

import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from .progress_store import (
    MEDITATION_TEST_DAY,
    EntryKey,
    LevelTestState,
    ProgressEntry,
    ProgressStore,
)
from ..utils.exceptions import StaleReconciliation, SyncError
from ..utils.logger import get_logger, log_function_call

logger = get_logger(__name__)


class ProgressBackend:
    """Remote progress store."""

    def submit_progress(self, entry: ProgressEntry) -> ProgressEntry:
        """Store ``entry`` remotely and return the record the remote accepted."""
        raise NotImplementedError

    def fetch_all_progress(self) -> List[ProgressEntry]:
        raise NotImplementedError

    def submit_level_test(self, state: LevelTestState) -> LevelTestState:
        raise NotImplementedError

    def fetch_level_tests(self) -> List[LevelTestState]:
        raise NotImplementedError


class HttpProgressBackend(ProgressBackend):
    """Progress backend speaking to the ``/progress`` and ``/levelTest`` REST endpoints."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    @classmethod
    def from_config(cls, sync_config, token: Optional[str] = None) -> "HttpProgressBackend":
        return cls(sync_config.base_url, token=token, timeout=sync_config.timeout_seconds)

    @property
    def progress_url(self) -> str:
        return f"{self.base_url}/progress"

    @property
    def level_test_url(self) -> str:
        return f"{self.base_url}/levelTest"

    def submit_progress(self, entry: ProgressEntry) -> ProgressEntry:
        body = self._post(self.progress_url, entry.to_dict(),
                          f"submit progress for L{entry.level}D{entry.day}")

        latest = body.get('latestEntry') if isinstance(body, dict) else None
        if latest is None:
            return entry
        try:
            return ProgressEntry.from_dict(latest)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed latestEntry {latest!r}: {e}")
            return entry

    def fetch_all_progress(self) -> List[ProgressEntry]:
        return self._get_list(self.progress_url, "progress", ProgressEntry.from_dict)

    def submit_level_test(self, state: LevelTestState) -> LevelTestState:
        self._post(self.level_test_url, state.to_dict(), f"submit level test for L{state.level}")
        return state

    def fetch_level_tests(self) -> List[LevelTestState]:
        return self._get_list(self.level_test_url, "level test", LevelTestState.from_dict)

    def _post(self, url: str, payload: dict, action: str) -> Any:
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SyncError(f"Failed to {action}: {e}") from e
        try:
            return response.json()
        except ValueError:
            return None

    def _get_list(self, url: str, kind: str, parse: Callable[[Any], Any]) -> list:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            records = response.json()
        except requests.RequestException as e:
            raise SyncError(f"Failed to fetch {kind} records: {e}") from e
        except ValueError as e:
            raise SyncError(f"{kind.capitalize()} response is not valid JSON: {e}") from e

        if not isinstance(records, list):
            raise SyncError(f"Expected a list of {kind} records, got {type(records).__name__}")

        parsed = []
        for record in records:
            try:
                parsed.append(parse(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed {kind} record {record!r}: {e}")
        return parsed


def _write_stamp(entry: ProgressEntry) -> Optional[float]:
    if entry.updated_at is not None:
        return entry.updated_at
    return entry.completed_at


def _merge_level_test(local: Optional[LevelTestState], remote: LevelTestState) -> LevelTestState:
    # Markers only ever move forward: a pass stays passed, first mastery keeps its earliest time
    if local is None:
        return remote
    stamps = [s for s in (local.first_completed_at, remote.first_completed_at) if s is not None]
    return LevelTestState(
        level=remote.level,
        test_passed=remote.test_passed or local.test_passed,
        first_completed_at=min(stamps) if stamps else None,
    )


class PersistenceSync:
    """Submits local writes and reconciles the store with the remote lists."""

    def __init__(self, store: ProgressStore, backend: ProgressBackend):
        self.store = store
        self.backend = backend
        self._pending: Dict[EntryKey, ProgressEntry] = {}
        self._pending_lock = threading.Lock()

    @property
    def pending_keys(self) -> List[EntryKey]:
        with self._pending_lock:
            return list(self._pending)

    def submit(self, entry: ProgressEntry) -> List[ProgressEntry]:
        """
        Submit a local write, then refresh from the remote store.

        The fetched list supersedes the record the remote acknowledged; the
        acknowledged record only stands in when the fetch does not carry it yet.

        Args:
            entry: Record already written to the local store

        Returns:
            The reconciled local entries

        Raises:
            SyncError: If the remote store fails; the local record is kept
        """
        with self._pending_lock:
            self._pending[entry.key] = entry

        try:
            accepted = self.backend.submit_progress(entry)
            remote = self.backend.fetch_all_progress()
            if accepted is not None and accepted.key not in {e.key for e in remote}:
                remote.append(accepted)
            return self.reconcile(remote, self.backend.fetch_level_tests())
        except SyncError as e:
            logger.log_error_with_context(e, f"submit L{entry.level}D{entry.day}")
            raise
        finally:
            with self._pending_lock:
                if self._pending.get(entry.key) is entry:
                    del self._pending[entry.key]

    def submit_level_test(self, state: LevelTestState) -> List[LevelTestState]:
        """Submit a level test marker, then refresh the markers from the remote store."""
        try:
            self.backend.submit_level_test(state)
            remote = self.backend.fetch_level_tests()
        except SyncError as e:
            logger.log_error_with_context(e, f"submit level test L{state.level}")
            raise
        if state.level not in {s.level for s in remote}:
            remote.append(state)
        with self.store.lock:
            self._reconcile_level_tests(remote)
            return self.store.level_tests()

    @log_function_call
    def refresh(self) -> List[ProgressEntry]:
        """Fetch the remote progress and level test lists and reconcile."""
        remote = self.backend.fetch_all_progress()
        level_tests = self.backend.fetch_level_tests()
        return self.reconcile(remote, level_tests)

    def reconcile(self, remote_entries: List[ProgressEntry],
                  remote_level_tests: Optional[Iterable[LevelTestState]] = None) -> List[ProgressEntry]:
        """Replace the local projection with the remote lists.

        Records stale relative to an in-flight write keep the local version.
        The meditation test record is kept locally when the remote list does
        not carry one. Level test markers are merged when given.
        """
        remote = {e.key: e for e in remote_entries}
        with self._pending_lock:
            pending = dict(self._pending)

        stale_count = 0
        with self.store.lock:
            for key, local in pending.items():
                try:
                    self._check_fresh(local, remote.get(key))
                except StaleReconciliation as e:
                    logger.debug(str(e))
                    remote[key] = self.store.get(*key) or local
                    stale_count += 1

            for local in self.store.entries():
                if local.day == MEDITATION_TEST_DAY and local.key not in remote:
                    remote[local.key] = local

            self.store.replace_all(remote.values())
            if remote_level_tests is not None:
                self._reconcile_level_tests(remote_level_tests)
            entries = self.store.entries()

        logger.log_sync("reconcile", len(entries), stale_count)
        return entries

    def _reconcile_level_tests(self, remote_level_tests: Iterable[LevelTestState]) -> None:
        local = {s.level: s for s in self.store.level_tests()}
        merged = dict(local)
        for state in remote_level_tests:
            merged[state.level] = _merge_level_test(local.get(state.level), state)
        self.store.replace_level_tests(merged.values())

    @staticmethod
    def _check_fresh(local: ProgressEntry, remote: Optional[ProgressEntry]) -> None:
        local_stamp = _write_stamp(local)
        if remote is None:
            raise StaleReconciliation(local.key, local_stamp, None)
        if local.completed and not remote.completed:
            raise StaleReconciliation(local.key, local_stamp, _write_stamp(remote))

        remote_stamp = _write_stamp(remote)
        if local_stamp is not None and (remote_stamp is None or remote_stamp < local_stamp):
            raise StaleReconciliation(local.key, local_stamp, remote_stamp)
