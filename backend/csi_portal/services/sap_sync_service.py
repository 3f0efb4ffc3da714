"""
SAP Sync Service

One-way reconciliation of business units, divisions and departments from
SAP into the local master-data tables. Each level is matched by code:
missing codes are created, changed names or parents are updated (and
inactive rows reactivated), and local active codes absent from SAP are
deactivated.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import sap_sync_logs
from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.department_service import department_service
from csi_portal.services.division_service import division_service
from csi_portal.services.entity_base import EntityService
from csi_portal.services.sap_client import SAPClient, sap_client


@dataclass
class SyncLevel:
    """One level of the organizational hierarchy as seen by the sync"""

    label: str
    stats_key: str
    payload_key: str
    service: EntityService
    parent_service: Optional[EntityService] = None
    parent_field: Optional[str] = None
    parent_code_keys: Tuple[str, ...] = ()
    parent_label: str = ""

    def parent_code(self, record: Dict[str, Any]) -> Optional[str]:
        for key in self.parent_code_keys:
            if record.get(key):
                return record[key]
        return None


LEVELS = [
    SyncLevel(
        label="Business Unit",
        stats_key="business_units",
        payload_key="businessUnits",
        service=business_unit_service,
    ),
    SyncLevel(
        label="Division",
        stats_key="divisions",
        payload_key="divisions",
        service=division_service,
        parent_service=business_unit_service,
        parent_field="business_unit_id",
        parent_code_keys=("businessUnitCode", "BusinessUnitCode"),
        parent_label="Business Unit",
    ),
    SyncLevel(
        label="Department",
        stats_key="departments",
        payload_key="departments",
        service=department_service,
        parent_service=division_service,
        parent_field="division_id",
        parent_code_keys=("divisionCode", "DivisionCode"),
        parent_label="Division",
    ),
]


def empty_level_stats() -> Dict[str, int]:
    return {"added": 0, "updated": 0, "deactivated": 0, "errors": 0}


def _records(data: Any, key: str) -> Optional[List[Dict[str, Any]]]:
    """
    SAP may wrap the list (``{"divisions": [...]}``) or return it bare.
    Any other shape gives None so the level is skipped instead of emptied.
    """
    if isinstance(data, dict):
        data = data.get(key)
    return data if isinstance(data, list) else None


class SAPSyncService:
    """Organizational data reconciliation against SAP"""

    def __init__(self, client: Optional[SAPClient] = None):
        self.client = client or sap_client

    async def _fetch(self, level: SyncLevel) -> Dict[str, Any]:
        if level.stats_key == "business_units":
            return await self.client.fetch_business_units()
        if level.stats_key == "divisions":
            return await self.client.fetch_divisions()
        return await self.client.fetch_departments()

    async def _sync_level(self, db: AsyncSession, level: SyncLevel) -> Tuple[Dict[str, int], List[str]]:
        stats = empty_level_stats()
        errors: List[str] = []
        table = level.service.table
        pk = level.service.pk

        response = await self._fetch(level)
        if not response["success"]:
            errors.append(f"{level.label} sync error: {response['error']}")
            stats["errors"] += 1
            return stats, errors

        records = _records(response["data"], level.payload_key)
        if records is None:
            errors.append(f"{level.label} sync error: unexpected response format from SAP")
            stats["errors"] += 1
            logger.warning(f"[SAPSync] Unexpected {level.label} payload, nothing deactivated")
            return stats, errors
        logger.info(f"[SAPSync] Fetched {len(records)} {level.label} records from SAP")

        existing = {row["code"]: row for row in await level.service.list(db, include_inactive=True)}
        parent_ids: Dict[str, str] = {}
        if level.parent_service:
            parent_ids = {
                row["code"]: row[level.parent_service.pk]
                for row in await level.parent_service.list(db, include_inactive=False)
            }

        sap_codes = {r.get("code") or r.get("Code") for r in records}

        for record in records:
            code = record.get("code") or record.get("Code")
            name = record.get("name") or record.get("Name")
            parent_code = level.parent_code(record) if level.parent_service else None

            if not code or not name or (level.parent_service and not parent_code):
                missing = "code or name" if not level.parent_service else f"code, name, or {level.parent_code_keys[0]}"
                errors.append(f"Invalid {level.label} data: missing {missing}")
                stats["errors"] += 1
                continue

            parent_id = None
            if level.parent_service:
                parent_id = parent_ids.get(parent_code)
                if not parent_id:
                    errors.append(f"{level.label} {code}: {level.parent_label} {parent_code} not found")
                    stats["errors"] += 1
                    continue

            try:
                current = existing.get(code)
                if current:
                    changed = current["name"] != name or not current["is_active"]
                    if level.parent_field and current[level.parent_field] != parent_id:
                        changed = True
                    if changed:
                        values = {"name": name, "is_active": True, "updated_at": datetime.utcnow()}
                        if level.parent_field:
                            values[level.parent_field] = parent_id
                        await db.execute(update(table).where(table.c[pk] == current[pk]).values(**values))
                        stats["updated"] += 1
                        logger.debug(f"[SAPSync] Updated {level.label}: {code}")
                else:
                    data = {"code": code, "name": name}
                    if level.parent_field:
                        data[level.parent_field] = parent_id
                    await level.service.create(db, data)
                    stats["added"] += 1
                    logger.debug(f"[SAPSync] Added {level.label}: {code}")
            except Exception as e:
                errors.append(f"Error processing {level.label} {code}: {e}")
                stats["errors"] += 1

        for code, row in existing.items():
            if code in sap_codes or not row["is_active"]:
                continue
            await db.execute(
                update(table)
                .where(table.c[pk] == row[pk])
                .values(is_active=False, updated_at=datetime.utcnow())
            )
            stats["deactivated"] += 1
            logger.debug(f"[SAPSync] Deactivated {level.label}: {code}")

        return stats, errors

    async def sync_organizational_data(self, db: AsyncSession) -> Dict[str, Any]:
        """Run a full sync; never raises, the outcome is in the returned dict"""
        start_time = datetime.utcnow()
        statistics: Dict[str, Any] = {level.stats_key: empty_level_stats() for level in LEVELS}
        statistics.update({"total_processed": 0, "total_errors": 0})
        errors: List[str] = []

        logger.info("[SAPSync] Starting organizational data sync")

        connection = await self.client.test_connection()
        if not connection["success"]:
            errors.append(f"Fatal error: SAP connection failed: {connection['error']}")
            logger.error(f"[SAPSync] SAP connection failed: {connection['error']}")
            await self._log_sync_result(db, statistics, errors, start_time, datetime.utcnow(), status="Failed")
            return {"success": False, "statistics": statistics, "errors": errors, "timestamp": start_time}

        for level in LEVELS:
            logger.info(f"[SAPSync] Syncing {level.label} records")
            level_stats, level_errors = await self._sync_level(db, level)
            statistics[level.stats_key] = level_stats
            errors.extend(level_errors)
            logger.log_sync_event("SAP", level.label, level_stats)

        statistics["total_processed"] = sum(
            statistics[level.stats_key][k] for level in LEVELS for k in ("added", "updated", "deactivated")
        )
        statistics["total_errors"] = sum(statistics[level.stats_key]["errors"] for level in LEVELS)

        end_time = datetime.utcnow()
        logger.info(f"[SAPSync] Completed in {(end_time - start_time).total_seconds():.2f}s")

        await self._log_sync_result(db, statistics, errors, start_time, end_time)

        return {
            "success": not errors,
            "statistics": statistics,
            "errors": errors,
            "timestamp": start_time,
        }

    async def _log_sync_result(
        self,
        db: AsyncSession,
        statistics: Dict[str, Any],
        errors: List[str],
        start_time: datetime,
        end_time: datetime,
        status: Optional[str] = None,
    ) -> None:
        def total(key: str) -> int:
            return sum(statistics[level.stats_key][key] for level in LEVELS)

        await BaseRepository(db, sap_sync_logs, "sync_log_id").create({
            "sync_type": "OrganizationalData",
            "status": status or ("Success" if not errors else "Completed with errors"),
            "start_time": start_time,
            "end_time": end_time,
            "records_processed": statistics["total_processed"],
            "records_added": total("added"),
            "records_updated": total("updated"),
            "records_deactivated": total("deactivated"),
            "error_count": statistics["total_errors"] or len(errors),
            "error_log": "\n".join(errors) if errors else None,
            "details": statistics,
            "created_at": datetime.utcnow(),
        })
        logger.info("[SAPSync] Sync result logged")

    async def get_sync_history(self, db: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(sap_sync_logs).order_by(sap_sync_logs.c.created_at.desc()).limit(limit)
        )
        return [dict(r._mapping) for r in result.all()]

    async def get_last_sync_status(self, db: AsyncSession) -> Optional[Dict[str, Any]]:
        history = await self.get_sync_history(db, limit=1)
        return history[0] if history else None


sap_sync_service = SAPSyncService()
