"""
Bulk Import Service

Imports master data from an uploaded Excel template inside the request
transaction. Parent entities are resolved by code; rows failing validation
or lookup either abort the whole import or, with ``skip_duplicates``, are
reported and skipped.

Also builds the downloadable xlsx templates and a plain-text import report.
"""

import json
import time
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Optional

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from sqlalchemy import Table, and_, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.core.security import get_password_hash
from csi_portal.db.tables import (
    application_department_mappings,
    applications,
    business_units,
    departments,
    divisions,
    function_application_mappings,
    functions,
    users,
)
from csi_portal.services.template_parser import (
    COLUMN_MAPPINGS,
    TemplateParser,
    as_bool,
    normalize_entity_type,
    template_parser,
)

# Code-keyed entity types: (table, pk, label, parent lookup or None)
# parent lookup is (record field, parent table, parent pk, parent label, fk column)
CODED_ENTITIES = {
    "BusinessUnit": (business_units, "business_unit_id", "Business Unit", None),
    "Division": (
        divisions, "division_id", "Division",
        ("business_unit_code", business_units, "business_unit_id", "Business Unit", "business_unit_id"),
    ),
    "Department": (
        departments, "department_id", "Department",
        ("division_code", divisions, "division_id", "Division", "division_id"),
    ),
    "Function": (functions, "function_id", "Function", None),
    "Application": (applications, "application_id", "Application", None),
}

SAMPLE_ROWS = {
    "BusinessUnit": ["BU-HO", "Head Office"],
    "Division": ["DIV-IT", "Information Technology", "BU-HO"],
    "Department": ["DEPT-APP", "Application Development", "DIV-IT"],
    "Function": ["FN-FIN", "Finance"],
    "Application": ["APP-ERP", "ERP System", "Enterprise resource planning"],
    "FunctionAppMapping": ["FN-FIN", "APP-ERP"],
    "AppDeptMapping": ["APP-ERP", "DEPT-APP"],
    "User": ["jdoe", "100234", "John Doe", "jdoe@example.com", "AdminEvent", "true", "false", "changeme123"],
}

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")


class RowError(Exception):
    """A single record could not be imported"""


class BulkImportService:
    """Excel driven batch creation of master data"""

    def __init__(self, parser: Optional[TemplateParser] = None):
        self.parser = parser or template_parser

    async def import_data(
        self,
        db: AsyncSession,
        content: bytes,
        entity_type: str,
        skip_duplicates: bool = False,
        update_existing: bool = False,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        started = time.monotonic()
        entity_type = normalize_entity_type(entity_type)
        results: Dict[str, Any] = {
            "success": False,
            "total_rows": 0,
            "imported": 0,
            "updated": 0,
            "skipped": 0,
            "failed": 0,
            "errors": [],
            "duration_ms": 0,
        }

        logger.info(f"[BulkImport] Starting {entity_type} import")
        parsed = self.parser.parse_excel_file(content, entity_type)
        results["total_rows"] = parsed["total_rows"]

        if parsed["errors"]:
            results["errors"] = list(parsed["errors"])
            results["failed"] = len(parsed["errors"])
            if not skip_duplicates:
                raise ValidationError(
                    f"Validation failed for {len(parsed['errors'])} record(s)",
                    details=parsed["errors"],
                )

        for index, record in enumerate(parsed["valid_records"], start=1):
            try:
                action = await self._import_record(
                    db, entity_type, record["data"], skip_duplicates, update_existing, created_by
                )
            except RowError as e:
                results["failed"] += 1
                results["errors"].append({"row": record["row"], "data": record["data"], "errors": [str(e)]})
                if not skip_duplicates:
                    raise ValidationError(f"Bulk import failed: {e}", details=results["errors"])
                continue

            results[action] += 1
            if index % 100 == 0:
                logger.info(f"[BulkImport] Progress {index}/{len(parsed['valid_records'])}")

        results["success"] = True
        results["duration_ms"] = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[BulkImport] {entity_type} done: {results['imported']} imported, "
            f"{results['updated']} updated, {results['skipped']} skipped, {results['failed']} failed"
        )
        return results

    async def _import_record(
        self,
        db: AsyncSession,
        entity_type: str,
        data: Dict[str, Any],
        skip_duplicates: bool,
        update_existing: bool,
        created_by: Optional[str],
    ) -> str:
        if entity_type in CODED_ENTITIES:
            return await self._import_coded(db, entity_type, data, skip_duplicates, update_existing, created_by)
        if entity_type == "FunctionAppMapping":
            return await self._import_mapping(
                db, function_application_mappings,
                ("function_id", functions, "Function", data["function_code"]),
                ("application_id", applications, "Application", data["application_code"]),
                skip_duplicates, created_by,
            )
        if entity_type == "AppDeptMapping":
            return await self._import_mapping(
                db, application_department_mappings,
                ("application_id", applications, "Application", data["application_code"]),
                ("department_id", departments, "Department", data["department_code"]),
                skip_duplicates, created_by,
            )
        return await self._import_user(db, data, skip_duplicates, created_by)

    @staticmethod
    async def _id_by_code(db: AsyncSession, table: Table, pk: str, code: str) -> Optional[str]:
        result = await db.execute(select(table.c[pk]).where(table.c.code == code))
        return result.scalar()

    async def _import_coded(
        self,
        db: AsyncSession,
        entity_type: str,
        data: Dict[str, Any],
        skip_duplicates: bool,
        update_existing: bool,
        created_by: Optional[str],
    ) -> str:
        table, pk, label, parent = CODED_ENTITIES[entity_type]
        values: Dict[str, Any] = {"name": data["name"]}
        if entity_type == "Application":
            values["description"] = data.get("description") or None

        if parent:
            field, parent_table, parent_pk, parent_label, fk = parent
            parent_id = await self._id_by_code(db, parent_table, parent_pk, data[field])
            if not parent_id:
                raise RowError(f"{parent_label} with code '{data[field]}' not found")
            values[fk] = parent_id

        existing_id = await self._id_by_code(db, table, pk, data["code"])
        if existing_id:
            if update_existing:
                await db.execute(
                    update(table)
                    .where(table.c[pk] == existing_id)
                    .values(**values, updated_at=datetime.utcnow(), updated_by=created_by)
                )
                return "updated"
            if skip_duplicates:
                return "skipped"
            raise RowError(f"{label} with code '{data['code']}' already exists")

        await db.execute(
            insert(table).values(
                code=data["code"],
                is_active=True,
                created_at=datetime.utcnow(),
                created_by=created_by,
                **values,
            )
        )
        return "imported"

    async def _import_mapping(
        self,
        db: AsyncSession,
        table: Table,
        left: tuple,
        right: tuple,
        skip_duplicates: bool,
        created_by: Optional[str],
    ) -> str:
        ids = {}
        for column, entity_table, label, code in (left, right):
            entity_id = await self._id_by_code(db, entity_table, column, code)
            if not entity_id:
                raise RowError(f"{label} with code '{code}' not found")
            ids[column] = entity_id

        exists = await db.execute(
            select(table.c.mapping_id).where(and_(*(table.c[k] == v for k, v in ids.items())))
        )
        if exists.scalar():
            if skip_duplicates:
                return "skipped"
            raise RowError(
                f"Mapping already exists for {left[2]} '{left[3]}' and {right[2]} '{right[3]}'"
            )

        await db.execute(insert(table).values(**ids, created_at=datetime.utcnow(), created_by=created_by))
        return "imported"

    async def _import_user(
        self,
        db: AsyncSession,
        data: Dict[str, Any],
        skip_duplicates: bool,
        created_by: Optional[str],
    ) -> str:
        exists = await db.execute(select(users.c.user_id).where(users.c.username == data["username"]))
        if exists.scalar():
            if skip_duplicates:
                return "skipped"
            raise RowError(f"User with username '{data['username']}' already exists")

        use_ldap = as_bool(data.get("use_ldap"))
        password = data.get("password")
        await db.execute(
            insert(users).values(
                username=data["username"],
                npk=data.get("npk") or None,
                display_name=data["display_name"],
                email=data["email"],
                role=data["role"],
                use_ldap=use_ldap,
                is_active=as_bool(data.get("is_active")),
                password_hash=get_password_hash(str(password)) if not use_ldap and password else None,
                created_at=datetime.utcnow(),
                created_by=created_by,
            )
        )
        return "imported"

    @staticmethod
    def generate_report(results: Dict[str, Any]) -> str:
        lines = [
            "=== Bulk Import Report ===",
            "",
            f"Status: {'SUCCESS' if results['success'] else 'FAILED'}",
            f"Duration: {results['duration_ms']}ms",
            "",
            f"Total Rows: {results['total_rows']}",
            f"Imported: {results['imported']}",
            f"Updated: {results['updated']}",
            f"Skipped: {results['skipped']}",
            f"Failed: {results['failed']}",
        ]
        if results["errors"]:
            lines += ["", f"Errors ({len(results['errors'])}):"]
            for index, error in enumerate(results["errors"], start=1):
                lines.append(f"{index}. Row {error['row']}:")
                lines.append(f"   Data: {json.dumps(error['data'], default=str)}")
                lines.append("   Issues:")
                lines.extend(f"     - {issue}" for issue in error["errors"])
        return "\n".join(lines) + "\n"

    @staticmethod
    def generate_template(entity_type: str) -> bytes:
        """xlsx template with the required headers and one sample row"""
        entity_type = normalize_entity_type(entity_type)
        headers = list(COLUMN_MAPPINGS[entity_type])

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = entity_type

        sheet.append(headers)
        for cell in sheet[1]:
            cell.font = HEADER_FONT
            cell.fill = HEADER_FILL
        sheet.append(SAMPLE_ROWS[entity_type])

        for index, header in enumerate(headers, start=1):
            sheet.column_dimensions[sheet.cell(row=1, column=index).column_letter].width = max(len(header) + 4, 18)

        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()


bulk_import_service = BulkImportService()
