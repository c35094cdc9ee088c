"""
Shared mirror synchronization helpers.

Reconciliation merges a remote snapshot into a mirror row and writes only the
fields that differ. List reads reconcile a bounded prefix of rows; remote
fetches for that prefix run concurrently while merges into the session stay
sequential, since one AsyncSession must never be used from two tasks.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.core.config import Settings, get_settings
from gateway_sync.core.errors import SyncError
from gateway_sync.core.logging import get_logger
from gateway_sync.integrations.culqi import CulqiClient, GatewayResponse
from gateway_sync.schemas.common import MirrorList

logger = get_logger(__name__)

RecordT = TypeVar("RecordT")
ViewT = TypeVar("ViewT")


def reconcile_fields(record: Any, updates: Mapping[str, Any]) -> List[str]:
    """Assign each differing value onto ``record`` and return the changed field names.

    An empty result means the mirror already matches the snapshot and nothing
    needs to be written.
    """
    changed: List[str] = []
    for name, value in updates.items():
        if getattr(record, name) != value:
            setattr(record, name, value)
            changed.append(name)
    return changed


def merge_metadata(current: Optional[Dict[str, Any]], incoming: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # The JSON column only tracks reassignment, so a merge always builds a new dict.
    if not incoming:
        return current
    return {**(current or {}), **incoming}


def from_epoch_millis(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(slots=True)
class ReconcileOutcome(Generic[RecordT]):
    record: RecordT
    snapshot: Optional[Dict[str, Any]] = None
    changed: List[str] = field(default_factory=list)

    @property
    def synced(self) -> bool:
        return self.snapshot is not None


class MirrorSynchronizer:
    """Base for services that keep a local mirror coherent with the gateway."""

    resource = "mirror"

    def __init__(self, session: AsyncSession, client: CulqiClient, settings: Optional[Settings] = None):
        self.session = session
        self.client = client
        self.settings = settings or get_settings()

    async def persist_created(self, record: Any, *, remote_id: str) -> None:
        """Insert a mirror row for a resource the gateway has already created.

        A local failure here leaves a remote resource with no mirror, so it is
        logged with the remote id before propagating.
        """
        self.session.add(record)
        try:
            await self.session.flush()
        except (SQLAlchemyError, SyncError) as exc:
            logger.error(
                f"{self.resource}.persist_failed",
                remote_id=remote_id,
                error=str(exc),
            )
            raise

    async def save_changes(self, record: Any, changed: Sequence[str], *, remote_id: str) -> None:
        if not changed:
            return
        try:
            await self.session.flush()
        except (SQLAlchemyError, SyncError) as exc:
            logger.error(
                f"{self.resource}.persist_failed",
                remote_id=remote_id,
                fields=list(changed),
                error=str(exc),
            )
            raise
        logger.info(f"{self.resource}.reconciled", remote_id=remote_id, fields=list(changed))

    async def reconcile_page(
        self,
        records: Sequence[RecordT],
        *,
        endpoint: Callable[[RecordT], str],
        apply: Callable[[RecordT, Dict[str, Any]], List[str]],
        view: Callable[[ReconcileOutcome[RecordT]], ViewT],
        total: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> MirrorList[ViewT]:
        """Reconcile the first ``limit`` rows against the gateway; serve the rest from the mirror."""
        limit = self.settings.list_reconcile_limit if limit is None else limit
        head, tail = list(records[:limit]), list(records[limit:])

        results = await asyncio.gather(
            *(self.client.request(endpoint(record)) for record in head),
            return_exceptions=True,
        )

        outcomes: List[ReconcileOutcome[RecordT]] = []
        for record, result in zip(head, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    f"{self.resource}.reconcile.failed",
                    endpoint=endpoint(record),
                    error=str(result),
                )
                outcomes.append(ReconcileOutcome(record=record))
                continue
            snapshot = _snapshot(result)
            # One savepoint per row, so a snapshot the mirror rejects only reverts its own row.
            try:
                async with self.session.begin_nested():
                    changed = apply(record, snapshot)
                    if changed:
                        await self.session.flush()
            except (SyncError, SQLAlchemyError) as exc:
                logger.warning(
                    f"{self.resource}.reconcile.failed",
                    endpoint=endpoint(record),
                    error=str(exc),
                )
                await self.session.refresh(record)
                outcomes.append(ReconcileOutcome(record=record))
                continue
            outcomes.append(ReconcileOutcome(record=record, snapshot=snapshot, changed=changed))

        outcomes.extend(ReconcileOutcome(record=record) for record in tail)
        return MirrorList(
            items=[view(outcome) for outcome in outcomes],
            total=len(records) if total is None else total,
            reconciled_through=len(head),
        )


def _snapshot(response: GatewayResponse) -> Dict[str, Any]:
    return response.data or {}
