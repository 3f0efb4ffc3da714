"""
Celery tasks for deployments that run the periodic work in a worker

Used when the API runs with SCHEDULER_ENABLED=false (several replicas):
1. process_scheduled_operations - one tick of the scheduled operations processor
2. sync_sap_organizational_data - nightly SAP reconciliation
"""
import asyncio
from typing import Any, Dict

from celery import Task

from csi_portal.core.celery_app import celery_app
from csi_portal.core.database import close_db, session_scope
from csi_portal.core.logging_config import logger
from csi_portal.services.sap_sync_service import sap_sync_service
from csi_portal.services.scheduled_operations_processor import scheduled_operations_processor


class AsyncTask(Task):
    """Celery task that runs a coroutine on a fresh event loop"""
    abstract = True

    def run_async(self, coro):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(coro)
        finally:
            # The engine is bound to this loop; drop it before the loop closes
            loop.run_until_complete(close_db())
            loop.close()


@celery_app.task(bind=True, base=AsyncTask)
def process_scheduled_operations(self) -> Dict[str, Any]:
    processed = self.run_async(scheduled_operations_processor.process_scheduled_operations())
    logger.info(f"[Tasks] Scheduled operations tick processed {processed} operation(s)")
    return {"processed": processed}


async def _sync_sap() -> Dict[str, Any]:
    async with session_scope() as session:
        return await sap_sync_service.sync_organizational_data(session)


@celery_app.task(bind=True, base=AsyncTask, max_retries=3, default_retry_delay=300)
def sync_sap_organizational_data(self) -> Dict[str, Any]:
    result = self.run_async(_sync_sap())
    logger.info(
        f"[Tasks] SAP sync finished: success={result['success']}, "
        f"errors={len(result['errors'])}"
    )
    return {
        "success": result["success"],
        "statistics": result["statistics"],
        "errors": result["errors"],
        "timestamp": result["timestamp"].isoformat(),
    }
