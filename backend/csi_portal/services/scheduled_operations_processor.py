"""
Scheduled Operations Processor - executes due blasts and reminders

Runs as a background asyncio task inside the API process (or as a Celery
beat task when a worker is deployed):
1. Every SCHEDULER_INTERVAL_SECONDS, select Pending operations whose
   next_execution_at has passed
2. Mark each Running, send the blast or reminder
3. Recurring operations go back to Pending with the next run time;
   one-time operations become Completed; failures become Failed
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.config import settings
from csi_portal.core.database import AsyncSessionLocal
from csi_portal.core.exceptions import ConflictError
from csi_portal.core.logging_config import logger
from csi_portal.db.tables import scheduled_operations
from csi_portal.services.email_service import email_service
from csi_portal.utils.scheduling import next_execution


class ScheduledOperationsProcessor:
    """Polling executor for the scheduled_operations table"""

    def __init__(
        self,
        interval_seconds: int = 60,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory or AsyncSessionLocal
        self.is_running = False
        self.running = False
        self._task: Optional[asyncio.Task] = None

        self.stats = {
            "total_processed": 0,
            "total_failed": 0,
            "last_run": None,
        }

    async def start(self):
        """Start the background polling loop"""
        if self.running:
            logger.warning("[Scheduler] Processor already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[Scheduler] Started - Interval: {self.interval_seconds}s")

    async def stop(self):
        """Stop the polling loop"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[Scheduler] Stopped")

    async def _loop(self):
        while self.running:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> None:
        """One polling cycle; skipped while the previous one is still running"""
        if self.is_running:
            logger.debug("[Scheduler] Previous cycle still running, skipping")
            return

        self.is_running = True
        try:
            await self.process_scheduled_operations()
        except Exception as e:
            logger.error(f"[Scheduler] Error processing scheduled operations: {e}", exc_info=True)
        finally:
            self.is_running = False

    async def trigger_processing(self) -> Dict[str, Any]:
        """Run a cycle now, on demand"""
        if self.is_running:
            raise ConflictError("Processing is already running")

        self.is_running = True
        try:
            processed = await self.process_scheduled_operations()
        finally:
            self.is_running = False
        return {"processed": processed}

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "is_scheduled": self._task is not None and not self._task.done(),
            **self.stats,
        }

    async def _due_operations(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(scheduled_operations)
                .where(
                    scheduled_operations.c.status == "Pending",
                    scheduled_operations.c.next_execution_at <= datetime.utcnow(),
                )
                .order_by(scheduled_operations.c.next_execution_at)
            )
            return [dict(r._mapping) for r in result.all()]

    async def process_scheduled_operations(self) -> int:
        operations = await self._due_operations()
        self.stats["last_run"] = datetime.utcnow().isoformat()

        if not operations:
            logger.debug("[Scheduler] No pending operations to process")
            return 0

        logger.info(f"[Scheduler] Processing {len(operations)} scheduled operations")
        for operation in operations:
            await self.process_operation(operation)
        return len(operations)

    async def _set(self, operation_id: str, **values) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(scheduled_operations)
                .where(scheduled_operations.c.operation_id == operation_id)
                .values(**values)
            )
            await session.commit()

    async def execute(self, db: AsyncSession, operation: Dict[str, Any]) -> Dict[str, Any]:
        if operation["operation_type"] == "Blast":
            return await email_service.send_survey_blast(
                db,
                operation["survey_id"],
                target_criteria=operation["target_criteria"] or {},
                email_template=operation["email_template"],
                embed_cover=operation["embed_cover"],
            )
        if operation["operation_type"] == "Reminder":
            return await email_service.send_reminders(
                db,
                operation["survey_id"],
                email_template=operation["email_template"],
                embed_cover=operation["embed_cover"],
            )
        raise ValueError(f"Unknown operation type: {operation['operation_type']}")

    async def process_operation(self, operation: Dict[str, Any]) -> None:
        operation_id = operation["operation_id"]
        logger.info(f"[Scheduler] Processing operation {operation_id} ({operation['operation_type']})")

        await self._set(operation_id, status="Running", last_executed_at=datetime.utcnow())

        try:
            async with self.session_factory() as session:
                result = await self.execute(session, operation)
                await session.commit()
        except Exception as e:
            logger.error(f"[Scheduler] Failed to process operation {operation_id}: {e}", exc_info=True)
            self.stats["total_failed"] += 1
            await self._set(operation_id, status="Failed", error_message=str(e))
            return

        count = (operation["execution_count"] or 0) + 1
        following = None
        if operation["frequency"] != "once":
            following = next_execution(operation["frequency"], operation["scheduled_time"], operation["day_of_week"])

        if following:
            await self._set(
                operation_id,
                status="Pending",
                next_execution_at=following,
                execution_count=count,
                error_message=None,
            )
            logger.info(f"[Scheduler] Operation {operation_id} completed. Next execution: {following}")
        else:
            await self._set(operation_id, status="Completed", execution_count=count, error_message=None)
            logger.info(f"[Scheduler] Operation {operation_id} completed (one-time)")

        self.stats["total_processed"] += 1
        logger.info(
            f"[Scheduler] Operation {operation_id} result: "
            f"{result.get('sent', 0)} sent, {result.get('failed', 0)} failed"
        )


scheduled_operations_processor = ScheduledOperationsProcessor(
    interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
)
