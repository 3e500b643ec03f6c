"""
Fetch-and-parse pipeline for batches of replay references.

Every reference is registered (and persisted as a placeholder) before any
request goes out, then a pool of at most ``max_concurrent`` workers pulls
references in FIFO order. Request starts are spaced by ``request_delay_sec``
so a large import never bursts against the replay server.

Lifecycle per reference: registered -> fetching -> parsed | failed.
A failure stays on its own reference; retry() re-runs the whole pipeline and
overwrites whatever was stored.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set

from constants import (
    DEFAULT_FETCH_TIMEOUT_SEC,
    DEFAULT_MAX_CONCURRENT_FETCHES,
    DEFAULT_REQUEST_DELAY_SEC,
    REPLAYS_KEY,
    Lifecycle,
)
from vsr.battle_record import BattleRecord, parse_battle_log
from vsr.fetcher import FetchedReplay
from vsr.identity import IdentityResolver
from vsr.storage import Store

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[FetchedReplay]]
Observer = Callable[[str, Lifecycle, Any], None]


class UnknownReferenceError(KeyError):
    pass


class ReferenceBusyError(RuntimeError):
    pass


@dataclass
class ReplayEntry:
    reference: str
    state: Lifecycle = Lifecycle.REGISTERED
    team_id: Optional[str] = None
    record: Optional[BattleRecord] = None
    error: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "state": self.state.value,
            "team_id": self.team_id,
            "record": self.record.to_dict() if self.record else None,
            "error": self.error,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReplayEntry":
        record = data.get("record")
        return cls(
            reference=data["reference"],
            state=Lifecycle(data.get("state") or Lifecycle.REGISTERED),
            team_id=data.get("team_id"),
            record=BattleRecord.from_dict(record) if record else None,
            error=data.get("error"),
            updated_at=data.get("updated_at"),
        )


def load_entries(store: Store) -> Dict[str, ReplayEntry]:
    raw = store.get(REPLAYS_KEY) or {}
    return {ref: ReplayEntry.from_dict(data) for ref, data in raw.items()}


def team_history(store: Store, team_id: Optional[str] = None) -> List[BattleRecord]:
    """Parsed records for a team, oldest first (upload time, then battle id)."""
    records = [
        entry.record
        for entry in load_entries(store).values()
        if entry.state is Lifecycle.PARSED
        and entry.record is not None
        and (team_id is None or entry.team_id == team_id)
    ]
    return sorted(records, key=lambda r: (r.uploaded_at or 0, r.battle_id or ""))


class FetchOrchestrator:
    def __init__(
        self,
        fetch: Fetch,
        store: Store,
        known_user_names: Iterable[str],
        observer: Optional[Observer] = None,
        team_id: Optional[str] = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_FETCHES,
        request_delay_sec: float = DEFAULT_REQUEST_DELAY_SEC,
        fetch_timeout_sec: float = DEFAULT_FETCH_TIMEOUT_SEC,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.fetch = fetch
        self.store = store
        self.resolver = IdentityResolver(known_user_names)
        self.observer = observer
        self.team_id = team_id
        self.max_concurrent = max_concurrent
        self.request_delay_sec = max(0.0, request_delay_sec)
        self.fetch_timeout_sec = fetch_timeout_sec

        self._pending: Deque[str] = deque()
        self._in_flight: Set[str] = set()
        self._withdrawn: Set[str] = set()
        self._observer_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._pace_lock: Optional[asyncio.Lock] = None
        self._last_start: Optional[float] = None

    # -- storage -----------------------------------------------------------

    def _save(self, entry: ReplayEntry) -> None:
        entry.updated_at = datetime.now().isoformat()
        raw = self.store.get(REPLAYS_KEY) or {}
        raw[entry.reference] = entry.to_dict()
        self.store.set(REPLAYS_KEY, raw)

    def _drop(self, reference: str) -> None:
        raw = self.store.get(REPLAYS_KEY) or {}
        if raw.pop(reference, None) is not None:
            self.store.set(REPLAYS_KEY, raw)

    def snapshot(self, reference: str) -> Optional[ReplayEntry]:
        data = (self.store.get(REPLAYS_KEY) or {}).get(reference)
        return ReplayEntry.from_dict(data) if data else None

    def status_counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in Lifecycle}
        for entry in load_entries(self.store).values():
            if self.team_id is None or entry.team_id == self.team_id:
                counts[entry.state.value] += 1
        return counts

    # -- observer ----------------------------------------------------------

    def _emit(self, reference: str, state: Lifecycle, payload: Any) -> None:
        if self.observer is None:
            return
        with self._observer_lock:
            try:
                self.observer(reference, state, payload)
            except Exception:
                logger.exception("Observer raised on %s -> %s", reference, state.value)

    # -- queue -------------------------------------------------------------

    def register(self, references: Iterable[str]) -> List[ReplayEntry]:
        """Persist a placeholder for every reference and queue it. No network I/O."""
        entries = []
        for reference in references:
            reference = (reference or "").strip()
            if not reference or reference in self._pending or reference in self._in_flight:
                continue
            self._withdrawn.discard(reference)
            entry = ReplayEntry(reference=reference, team_id=self.team_id)
            self._save(entry)
            self._pending.append(reference)
            entries.append(entry)
            self._emit(reference, Lifecycle.REGISTERED, entry)
        return entries

    def withdraw(self, reference: str) -> bool:
        """
        Take a reference back. A queued one is dropped before it starts; an
        in-flight one finishes but its result is discarded. Returns False
        when the reference already reached a final state.
        """
        if reference in self._pending:
            self._pending.remove(reference)
            self._drop(reference)
            logger.info("Withdrew queued replay %s", reference)
            return True
        if reference in self._in_flight:
            self._withdrawn.add(reference)
            logger.info("Withdrew in-flight replay %s; its result will be discarded", reference)
            return True
        if self.snapshot(reference) is None:
            raise UnknownReferenceError(reference)
        return False

    async def run(self) -> None:
        """Work the queue until it is empty."""
        if not self._pending:
            return
        logger.info(
            "Processing %d replay(s) with %d worker(s)", len(self._pending), self.max_concurrent
        )
        workers = [
            asyncio.create_task(self._worker()) for _ in range(min(self.max_concurrent, len(self._pending)))
        ]
        await asyncio.gather(*workers)
        logger.info("Replay batch finished: %s", self.status_counts())

    async def process(self, references: Iterable[str]) -> List[ReplayEntry]:
        entries = self.register(references)
        await self.run()
        return [self.snapshot(entry.reference) or entry for entry in entries]

    async def retry(self, reference: str) -> Optional[ReplayEntry]:
        entry = self.snapshot(reference)
        if entry is None:
            raise UnknownReferenceError(reference)
        if reference in self._in_flight:
            raise ReferenceBusyError(f"Replay {reference} is already being processed")
        if reference in self._pending:
            self._pending.remove(reference)
        self._withdrawn.discard(reference)
        await self._process_one(reference)
        return self.snapshot(reference)

    # -- workers -----------------------------------------------------------

    async def _worker(self) -> None:
        while self._pending:
            reference = self._pending.popleft()
            await self._process_one(reference)

    def _ensure_primitives(self) -> None:
        # semaphore and lock are bound to the loop that first uses them
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._slots = asyncio.Semaphore(self.max_concurrent)
            self._pace_lock = asyncio.Lock()

    async def _wait_for_pace(self) -> None:
        async with self._pace_lock:
            now = time.monotonic()
            if self._last_start is not None:
                wait = self._last_start + self.request_delay_sec - now
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    async def _process_one(self, reference: str) -> None:
        self._ensure_primitives()
        self._in_flight.add(reference)
        try:
            async with self._slots:
                await self._wait_for_pace()
                if reference in self._withdrawn:
                    # withdrawn while waiting for a slot, never started
                    self._withdrawn.discard(reference)
                    self._drop(reference)
                    return
                entry = ReplayEntry(reference=reference, state=Lifecycle.FETCHING, team_id=self.team_id)
                self._save(entry)
                self._emit(reference, Lifecycle.FETCHING, entry)
                try:
                    record = await self._fetch_and_parse(reference)
                except Exception as exc:
                    self._commit_failure(reference, exc)
                else:
                    self._commit_record(reference, record)
        finally:
            self._in_flight.discard(reference)

    async def _fetch_and_parse(self, reference: str) -> BattleRecord:
        try:
            fetched = await asyncio.wait_for(self.fetch(reference), timeout=self.fetch_timeout_sec)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"Fetching {reference} took longer than {self.fetch_timeout_sec}s"
            ) from exc
        record = parse_battle_log(fetched.log)
        record.battle_id = fetched.battle_id
        record.uploaded_at = fetched.uploaded_at
        if not record.participants and len(fetched.players) == 2:
            record.participants = {"p1": fetched.players[0], "p2": fetched.players[1]}
        return self.resolver.resolve(record)

    def _commit_record(self, reference: str, record: BattleRecord) -> None:
        if reference in self._withdrawn:
            self._withdrawn.discard(reference)
            self._drop(reference)
            logger.info("Discarded result for withdrawn replay %s", reference)
            return
        entry = ReplayEntry(
            reference=reference, state=Lifecycle.PARSED, team_id=self.team_id, record=record
        )
        self._save(entry)
        logger.info(
            "Parsed %s: %s vs %s (%s)",
            reference,
            record.user_name or "?",
            record.opponent_label,
            record.result.value,
        )
        self._emit(reference, Lifecycle.PARSED, entry)

    def _commit_failure(self, reference: str, exc: Exception) -> None:
        if reference in self._withdrawn:
            self._withdrawn.discard(reference)
            self._drop(reference)
            return
        entry = ReplayEntry(
            reference=reference,
            state=Lifecycle.FAILED,
            team_id=self.team_id,
            error=f"{type(exc).__name__}: {exc}",
        )
        self._save(entry)
        logger.warning("Failed to process replay %s: %s", reference, entry.error)
        self._emit(reference, Lifecycle.FAILED, exc)
