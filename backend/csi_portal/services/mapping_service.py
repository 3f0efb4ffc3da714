"""
Mapping Service - Function <-> Application and Application <-> Department

Handles:
- Single and multi-select mapping creation (duplicates skipped in bulk)
- Deletion by mapping id or by entity pair
- Grouped / hierarchical read projections for the admin UI
- CSV export
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import Table, select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ConflictError, NotFoundError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository, row_to_dict
from csi_portal.db.tables import (
    application_department_mappings as adm,
    applications,
    business_units,
    departments,
    divisions,
    function_application_mappings as fam,
    functions,
)

FUNCTION_APP_CSV_HEADERS = [
    "Function Code", "Function Name", "Application Code", "Application Name", "Created At",
]
APP_DEPT_CSV_HEADERS = [
    "Business Unit Code", "Business Unit Name", "Division Code", "Division Name",
    "Department Code", "Department Name", "Application Code", "Application Name", "Created At",
]


def format_csv_date(value: Optional[datetime]) -> str:
    """YYYY-MM-DD HH:MM, empty for missing dates"""
    if not value:
        return ""
    return value.strftime("%Y-%m-%d %H:%M")


def build_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    """CSV text quoting only values that contain a comma, quote or newline"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().rstrip("\n")


class MappingService:
    """Many-to-many join table management"""

    # ==================== VALIDATION ====================

    async def _ensure_active(self, db: AsyncSession, table: Table, pk: str, entity_id: str, label: str) -> None:
        row = (await db.execute(
            select(table.c[pk]).where(table.c[pk] == entity_id, table.c.is_active.is_(True))
        )).first()
        if not row:
            raise NotFoundError(label, f"{label} not found or inactive")

    async def _ensure_function(self, db: AsyncSession, function_id: str) -> None:
        await self._ensure_active(db, functions, "function_id", function_id, "Function")

    async def _ensure_application(self, db: AsyncSession, application_id: str) -> None:
        await self._ensure_active(db, applications, "application_id", application_id, "Application")

    async def _ensure_department(self, db: AsyncSession, department_id: str) -> None:
        await self._ensure_active(db, departments, "department_id", department_id, "Department")

    async def _create_many(
        self,
        db: AsyncSession,
        repo: BaseRepository,
        fixed: Dict[str, str],
        application_ids: List[str],
        created_by: Optional[str],
    ) -> Dict[str, List[Dict[str, Any]]]:
        created: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []
        for application_id in dict.fromkeys(application_ids):
            try:
                await self._ensure_application(db, application_id)
            except NotFoundError as e:
                skipped.append({"application_id": application_id, "reason": e.message})
                continue
            if await repo.find_one({**fixed, "application_id": application_id}):
                skipped.append({"application_id": application_id, "reason": "Already exists"})
                continue
            created.append(await repo.create({
                **fixed,
                "application_id": application_id,
                "created_at": datetime.utcnow(),
                "created_by": created_by,
            }))
        return {"created": created, "skipped": skipped}

    # ==================== FUNCTION <-> APPLICATION ====================

    async def create_function_app_mapping(
        self, db: AsyncSession, function_id: str, application_id: str, created_by: Optional[str] = None
    ) -> Dict[str, Any]:
        await self._ensure_function(db, function_id)
        await self._ensure_application(db, application_id)

        repo = BaseRepository(db, fam, "mapping_id")
        if await repo.find_one({"function_id": function_id, "application_id": application_id}):
            raise ConflictError("Mapping already exists for this Function-Application pair")

        mapping = await repo.create({
            "function_id": function_id,
            "application_id": application_id,
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        })
        logger.info(f"[Mapping] Function {function_id} -> Application {application_id}")
        return mapping

    async def create_multiple_function_app_mappings(
        self, db: AsyncSession, function_id: str, application_ids: List[str], created_by: Optional[str] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        await self._ensure_function(db, function_id)
        result = await self._create_many(
            db, BaseRepository(db, fam, "mapping_id"), {"function_id": function_id}, application_ids, created_by
        )
        logger.info(
            f"[Mapping] Function {function_id}: {len(result['created'])} created, "
            f"{len(result['skipped'])} skipped"
        )
        return result

    async def delete_function_app_mapping(self, db: AsyncSession, mapping_id: str) -> bool:
        if not await BaseRepository(db, fam, "mapping_id").delete(mapping_id):
            raise NotFoundError("Mapping")
        return True

    async def delete_function_app_mapping_by_entities(
        self, db: AsyncSession, function_id: str, application_id: str
    ) -> bool:
        repo = BaseRepository(db, fam, "mapping_id")
        mapping = await repo.find_one({"function_id": function_id, "application_id": application_id})
        if not mapping:
            raise NotFoundError("Mapping")
        return await repo.delete(mapping["mapping_id"])

    async def get_function_app_mappings(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await BaseRepository(db, fam, "mapping_id").find_all(order_by="created_at")

    def _function_app_details_query(self):
        return (
            select(
                functions.c.function_id,
                functions.c.code.label("function_code"),
                functions.c.name.label("function_name"),
                applications.c.application_id,
                applications.c.code.label("application_code"),
                applications.c.name.label("application_name"),
                fam.c.mapping_id,
                fam.c.created_at,
            )
            .select_from(fam)
            .join(functions, fam.c.function_id == functions.c.function_id)
            .join(applications, fam.c.application_id == applications.c.application_id)
            .where(functions.c.is_active.is_(True), applications.c.is_active.is_(True))
            .order_by(functions.c.name, applications.c.name)
        )

    async def get_function_app_mappings_with_details(self, db: AsyncSession) -> List[Dict[str, Any]]:
        """Active mappings grouped by function, applications listed as tags"""
        rows = (await db.execute(self._function_app_details_query())).all()
        grouped: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            group = grouped.setdefault(row.function_id, {
                "function_id": row.function_id,
                "function_code": row.function_code,
                "function_name": row.function_name,
                "applications": [],
            })
            group["applications"].append({
                "mapping_id": row.mapping_id,
                "application_id": row.application_id,
                "application_code": row.application_code,
                "application_name": row.application_name,
                "created_at": row.created_at,
            })
        return list(grouped.values())

    async def get_applications_by_function(self, db: AsyncSession, function_id: str) -> List[Dict[str, Any]]:
        stmt = (
            select(applications, fam.c.mapping_id)
            .join(fam, fam.c.application_id == applications.c.application_id)
            .where(fam.c.function_id == function_id, applications.c.is_active.is_(True))
            .order_by(applications.c.name)
        )
        return [row_to_dict(r) for r in (await db.execute(stmt)).all()]

    async def get_functions_by_application(self, db: AsyncSession, application_id: str) -> List[Dict[str, Any]]:
        stmt = (
            select(functions, fam.c.mapping_id)
            .join(fam, fam.c.function_id == functions.c.function_id)
            .where(fam.c.application_id == application_id, functions.c.is_active.is_(True))
            .order_by(functions.c.name)
        )
        return [row_to_dict(r) for r in (await db.execute(stmt)).all()]

    async def export_function_app_mappings_csv(self, db: AsyncSession) -> str:
        rows = (await db.execute(self._function_app_details_query())).all()
        csv_text = build_csv(FUNCTION_APP_CSV_HEADERS, (
            [r.function_code, r.function_name, r.application_code, r.application_name,
             format_csv_date(r.created_at)]
            for r in rows
        ))
        logger.info(f"[Mapping] Exported {len(rows)} Function-Application mappings")
        return csv_text

    # ==================== APPLICATION <-> DEPARTMENT ====================

    async def create_app_dept_mapping(
        self, db: AsyncSession, application_id: str, department_id: str, created_by: Optional[str] = None
    ) -> Dict[str, Any]:
        await self._ensure_application(db, application_id)
        await self._ensure_department(db, department_id)

        repo = BaseRepository(db, adm, "mapping_id")
        if await repo.find_one({"application_id": application_id, "department_id": department_id}):
            raise ConflictError("Mapping already exists for this Application-Department pair")

        mapping = await repo.create({
            "application_id": application_id,
            "department_id": department_id,
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        })
        logger.info(f"[Mapping] Application {application_id} -> Department {department_id}")
        return mapping

    async def create_multiple_app_dept_mappings(
        self, db: AsyncSession, department_id: str, application_ids: List[str], created_by: Optional[str] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        await self._ensure_department(db, department_id)
        result = await self._create_many(
            db, BaseRepository(db, adm, "mapping_id"), {"department_id": department_id}, application_ids, created_by
        )
        logger.info(
            f"[Mapping] Department {department_id}: {len(result['created'])} created, "
            f"{len(result['skipped'])} skipped"
        )
        return result

    async def delete_app_dept_mapping(self, db: AsyncSession, mapping_id: str) -> bool:
        if not await BaseRepository(db, adm, "mapping_id").delete(mapping_id):
            raise NotFoundError("Mapping")
        return True

    async def delete_app_dept_mapping_by_entities(
        self, db: AsyncSession, application_id: str, department_id: str
    ) -> bool:
        repo = BaseRepository(db, adm, "mapping_id")
        mapping = await repo.find_one({"application_id": application_id, "department_id": department_id})
        if not mapping:
            raise NotFoundError("Mapping")
        return await repo.delete(mapping["mapping_id"])

    async def get_app_dept_mappings(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await BaseRepository(db, adm, "mapping_id").find_all(order_by="created_at")

    def _app_dept_hierarchy_query(self):
        return (
            select(
                business_units.c.business_unit_id,
                business_units.c.code.label("business_unit_code"),
                business_units.c.name.label("business_unit_name"),
                divisions.c.division_id,
                divisions.c.code.label("division_code"),
                divisions.c.name.label("division_name"),
                departments.c.department_id,
                departments.c.code.label("department_code"),
                departments.c.name.label("department_name"),
                applications.c.application_id,
                applications.c.code.label("application_code"),
                applications.c.name.label("application_name"),
                adm.c.mapping_id,
                adm.c.created_at,
            )
            .select_from(adm)
            .join(applications, adm.c.application_id == applications.c.application_id)
            .join(departments, adm.c.department_id == departments.c.department_id)
            .join(divisions, departments.c.division_id == divisions.c.division_id)
            .join(business_units, divisions.c.business_unit_id == business_units.c.business_unit_id)
            .where(
                applications.c.is_active.is_(True),
                departments.c.is_active.is_(True),
                divisions.c.is_active.is_(True),
                business_units.c.is_active.is_(True),
            )
            .order_by(business_units.c.name, divisions.c.name, departments.c.name, applications.c.name)
        )

    async def get_app_dept_mappings_hierarchical(self, db: AsyncSession) -> List[Dict[str, Any]]:
        """Business Unit -> Divisions -> Departments -> Applications"""
        rows = (await db.execute(self._app_dept_hierarchy_query())).all()

        tree: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            bu = tree.setdefault(row.business_unit_id, {
                "business_unit_id": row.business_unit_id,
                "business_unit_code": row.business_unit_code,
                "business_unit_name": row.business_unit_name,
                "divisions": {},
            })
            division = bu["divisions"].setdefault(row.division_id, {
                "division_id": row.division_id,
                "division_code": row.division_code,
                "division_name": row.division_name,
                "departments": {},
            })
            department = division["departments"].setdefault(row.department_id, {
                "department_id": row.department_id,
                "department_code": row.department_code,
                "department_name": row.department_name,
                "applications": [],
            })
            department["applications"].append({
                "mapping_id": row.mapping_id,
                "application_id": row.application_id,
                "application_code": row.application_code,
                "application_name": row.application_name,
                "created_at": row.created_at,
            })

        return [
            {
                **bu,
                "divisions": [
                    {**division, "departments": list(division["departments"].values())}
                    for division in bu["divisions"].values()
                ],
            }
            for bu in tree.values()
        ]

    async def get_applications_by_department(self, db: AsyncSession, department_id: str) -> List[Dict[str, Any]]:
        stmt = (
            select(applications, adm.c.mapping_id)
            .join(adm, adm.c.application_id == applications.c.application_id)
            .where(adm.c.department_id == department_id, applications.c.is_active.is_(True))
            .order_by(applications.c.name)
        )
        return [row_to_dict(r) for r in (await db.execute(stmt)).all()]

    async def get_departments_by_application(self, db: AsyncSession, application_id: str) -> List[Dict[str, Any]]:
        stmt = (
            select(
                departments,
                adm.c.mapping_id,
                divisions.c.name.label("division_name"),
                business_units.c.name.label("business_unit_name"),
            )
            .join(adm, adm.c.department_id == departments.c.department_id)
            .join(divisions, departments.c.division_id == divisions.c.division_id)
            .join(business_units, divisions.c.business_unit_id == business_units.c.business_unit_id)
            .where(adm.c.application_id == application_id, departments.c.is_active.is_(True))
            .order_by(business_units.c.name, divisions.c.name, departments.c.name)
        )
        return [row_to_dict(r) for r in (await db.execute(stmt)).all()]

    async def export_app_dept_mappings_csv(self, db: AsyncSession) -> str:
        rows = (await db.execute(self._app_dept_hierarchy_query())).all()
        csv_text = build_csv(APP_DEPT_CSV_HEADERS, (
            [r.business_unit_code, r.business_unit_name, r.division_code, r.division_name,
             r.department_code, r.department_name, r.application_code, r.application_name,
             format_csv_date(r.created_at)]
            for r in rows
        ))
        logger.info(f"[Mapping] Exported {len(rows)} Application-Department mappings")
        return csv_text


mapping_service = MappingService()
