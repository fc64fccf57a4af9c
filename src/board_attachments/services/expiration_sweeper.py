"""Background reaper for TEMP attachments that were never confirmed.

Each run deletes the storage object first and only then marks the row, with a
conditional write that still requires the row to be TEMP and expired. Rows
whose object could not be deleted are left untouched so the next run finds
them again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from board_attachments.config import settings
from board_attachments.db import session_scope
from board_attachments.integrations.storage.object_storage import ObjectStorage
from board_attachments.models import Attachment, utc_now
from board_attachments.repositories import attachments_repo

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    found: int = 0
    deleted_objects: int = 0
    failed_objects: list[str] = field(default_factory=list)
    reaped_rows: list[str] = field(default_factory=list)


class ExpirationSweeper:
    def __init__(
        self,
        storage_factory: Callable[[], ObjectStorage],
        *,
        interval_seconds: int,
        batch_size: int = 500,
        hard_delete: bool = False,
    ) -> None:
        self._storage_factory = storage_factory
        self._interval_seconds = max(1, int(interval_seconds))
        self._batch_size = int(batch_size)
        self._hard_delete = hard_delete
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, storage_factory: Callable[[], ObjectStorage]) -> "ExpirationSweeper":
        return cls(
            storage_factory,
            interval_seconds=settings.attachments_sweep_interval_seconds,
            batch_size=settings.attachments_sweep_batch_size,
            hard_delete=settings.attachments_sweeper_hard_delete,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, *, now: datetime | None = None) -> SweepResult:
        """One sweep. Never raises: failures are logged and retried next run.

        Candidates are read page by page with a keyset cursor, so rows whose
        object keeps failing to delete never starve the rows behind them. No
        database transaction is held open across storage calls.
        """
        now = now or utc_now()
        result = SweepResult()

        try:
            storage = self._storage_factory()
        except Exception:
            logger.exception("sweeper: object storage unavailable")
            return result

        cursor: tuple[datetime, str] | None = None
        try:
            while True:
                async with session_scope() as session:
                    page = await attachments_repo.find_expired_temp(
                        session, now=now, limit=self._batch_size, after=cursor
                    )
                if not page:
                    break

                result.found += len(page)
                last = page[-1]
                if last.expires_at is not None:
                    cursor = (last.expires_at, last.id)

                deletable = await self._delete_objects(storage, page, result)
                if deletable:
                    result.reaped_rows.extend(await self._reap(deletable, now=now))

                if self._batch_size <= 0 or len(page) < self._batch_size:
                    break
        except Exception:
            logger.exception("sweeper: run failed")
            return result

        if not result.found:
            logger.debug("sweeper: no expired temporary attachments")
            return result

        logger.info(
            "sweeper: run completed total_expired=%d success=%d failed=%d reaped=%d",
            result.found,
            result.deleted_objects,
            len(result.failed_objects),
            len(result.reaped_rows),
        )
        return result

    async def _delete_objects(
        self, storage: ObjectStorage, page: list[Attachment], result: SweepResult
    ) -> list[str]:
        deletable: list[str] = []
        for attachment in page:
            try:
                await storage.delete_object(attachment.storage_key)
            except Exception:
                logger.warning(
                    "sweeper: failed to delete object attachment_id=%s storage_key=%s",
                    attachment.id,
                    attachment.storage_key,
                    exc_info=True,
                )
                result.failed_objects.append(attachment.id)
                continue
            deletable.append(attachment.id)
        result.deleted_objects += len(deletable)
        return deletable

    async def _reap(self, ids: list[str], *, now: datetime) -> list[str]:
        # Guarded on TEMP + expired: a row that changed state since the read is skipped.
        async with session_scope() as session:
            if self._hard_delete:
                reaped = await attachments_repo.delete_batch(
                    session, ids, now=now, only_expired_temp=True
                )
            else:
                reaped = await attachments_repo.soft_delete_batch(
                    session, ids, now=now, only_expired_temp=True
                )
            await session.commit()
        return reaped

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="attachments-expiration-sweeper")
        logger.info("sweeper started interval_seconds=%d", self._interval_seconds)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("sweeper stopped")
