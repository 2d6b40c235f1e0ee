"""
Collection run registry

Holds the current CollectionRun in a single owned cell. Every transition is a
compare-and-swap on (run_id, status), so a cancel or finish that names a stale
run never touches the current one. Each run carries its own
CancellationToken, which the collector checks at every window and page
boundary.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import structlog

from services.storage.kv_store import KVStore
from shared.models import (
    COLLECTION_STATUS_KEY,
    RUN_ACTIVE,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_FAILED,
    CollectionRun,
)


class CancellationToken:
    """Cooperative cancellation flag bound to one run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()


class RunRegistry:
    """Owner of the current collection run.

    The run state is mirrored to the store under COLLECTION_STATUS_KEY on
    every transition so the status can be read without the registry.
    """

    def __init__(self, store: Optional[KVStore] = None) -> None:
        self.store = store
        self._current: Optional[CollectionRun] = None
        self._token: Optional[CancellationToken] = None
        self._lock = asyncio.Lock()
        self.logger = structlog.get_logger(__name__)

    @property
    def current(self) -> Optional[CollectionRun]:
        return self._current

    async def begin(self) -> Tuple[CollectionRun, CancellationToken]:
        """Start a new run and make it current.

        A previous run that is still active keeps its own token and runs to
        completion, but can no longer be cancelled through the registry.
        """
        async with self._lock:
            if self._current is not None and self._current.status == RUN_ACTIVE:
                self.logger.warning("Replacing active collection run",
                                    previous_run_id=self._current.run_id)
            run = CollectionRun(
                run_id=uuid.uuid4().hex,
                started_at=datetime.now(timezone.utc),
            )
            token = CancellationToken(run.run_id)
            self._current = run
            self._token = token
            await self._persist(run)

        self.logger.info("Collection run started", run_id=run.run_id)
        return run, token

    async def _transition(self, run_id: str, expected: str, new_status: str) -> bool:
        async with self._lock:
            run = self._current
            if run is None or run.run_id != run_id or run.status != expected:
                return False
            run.status = new_status
            if new_status == RUN_CANCELLED and self._token is not None:
                self._token.cancel()
            await self._persist(run)
            return True

    async def cancel(self, run_id: Optional[str] = None) -> bool:
        """Cancel the current run if it is active and matches run_id.

        Args:
            run_id: Run to cancel; None means whichever run is current

        Returns:
            True if a run was cancelled
        """
        target = run_id
        if target is None:
            current = self._current
            if current is None:
                return False
            target = current.run_id

        cancelled = await self._transition(target, RUN_ACTIVE, RUN_CANCELLED)
        if cancelled:
            self.logger.info("Collection run cancelled", run_id=target)
        else:
            self.logger.info("No matching active collection run", run_id=target)
        return cancelled

    async def finish(self, run_id: str, failed: bool = False) -> bool:
        """Mark an active run completed (or failed)."""
        return await self._transition(
            run_id, RUN_ACTIVE, RUN_FAILED if failed else RUN_COMPLETED
        )

    def status(self) -> Dict[str, Any]:
        if self._current is None:
            return {"status": "none"}
        return self._current.to_dict()

    async def _persist(self, run: CollectionRun) -> None:
        if self.store is not None:
            await self.store.put(COLLECTION_STATUS_KEY, run.to_dict())
