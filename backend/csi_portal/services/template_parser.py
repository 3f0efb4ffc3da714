"""
Excel template parsing for bulk master-data import.

The first worksheet is read with the header on row 1 and data from row 2.
Column headers are mapped to record fields per entity type; rows are
validated with the same rules the master-data services apply.
"""

import json
from io import BytesIO
from zipfile import BadZipFile
from typing import Any, Dict, List

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from csi_portal.core.exceptions import ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.db.tables import USER_ROLES
from csi_portal.services.entity_base import CODE_MESSAGE, CODE_PATTERN
from csi_portal.services.user_service import EMAIL_PATTERN

# Header text -> record field, per entity type. All headers are required.
COLUMN_MAPPINGS: Dict[str, Dict[str, str]] = {
    "BusinessUnit": {"Code": "code", "Name": "name"},
    "Division": {"Code": "code", "Name": "name", "Business Unit Code": "business_unit_code"},
    "Department": {"Code": "code", "Name": "name", "Division Code": "division_code"},
    "Function": {"Code": "code", "Name": "name"},
    "Application": {"Code": "code", "Name": "name", "Description": "description"},
    "FunctionAppMapping": {"Function Code": "function_code", "Application Code": "application_code"},
    "AppDeptMapping": {"Application Code": "application_code", "Department Code": "department_code"},
    "User": {
        "Username": "username",
        "NPK": "npk",
        "DisplayName": "display_name",
        "Email": "email",
        "Role": "role",
        "IsActive": "is_active",
        "UseLDAP": "use_ldap",
        "Password": "password",
    },
}

ENTITY_TYPES = tuple(COLUMN_MAPPINGS)


def normalize_entity_type(entity_type: str) -> str:
    """Accept the plural ``users`` alias used by older templates"""
    if entity_type in ("users", "Users"):
        return "User"
    if entity_type not in COLUMN_MAPPINGS:
        raise ValidationError(f"Unknown entity type: {entity_type}")
    return entity_type


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "y")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def cell_text(value: Any) -> Any:
    """Normalize a cell value to trimmed text; booleans and dates keep their type"""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (int, float, str)):
        return str(value).strip()
    return value


def _code_and_name(record: Dict[str, Any]) -> List[str]:
    errors = []
    code = record.get("code")
    if _blank(code):
        errors.append("Code is required")
    elif not CODE_PATTERN.match(str(code)):
        errors.append(CODE_MESSAGE)

    name = record.get("name")
    if _blank(name):
        errors.append("Name is required")
    elif len(str(name)) > 200:
        errors.append("Name must be 1-200 characters")
    return errors


def _required(record: Dict[str, Any], field: str, label: str) -> List[str]:
    return [f"{label} is required"] if _blank(record.get(field)) else []


def _validate_user(record: Dict[str, Any]) -> List[str]:
    errors = _required(record, "username", "Username")
    errors += _required(record, "display_name", "DisplayName")

    email = record.get("email")
    if _blank(email):
        errors.append("Email is required")
    elif not EMAIL_PATTERN.match(str(email)):
        errors.append("Invalid email format")

    if record.get("role") not in USER_ROLES:
        errors.append("Role must be SuperAdmin, AdminEvent, ITLead, or DepartmentHead")

    if not as_bool(record.get("use_ldap")):
        password = record.get("password")
        if _blank(password) or len(str(password)) < 8:
            errors.append("Password must be at least 8 characters for non-LDAP users")
    return errors


def validate_record(record: Dict[str, Any], entity_type: str) -> List[str]:
    """Row level validation; returns the list of problems (empty when valid)"""
    if entity_type in ("BusinessUnit", "Function"):
        return _code_and_name(record)
    if entity_type == "Division":
        return _code_and_name(record) + _required(record, "business_unit_code", "Business Unit Code")
    if entity_type == "Department":
        return _code_and_name(record) + _required(record, "division_code", "Division Code")
    if entity_type == "Application":
        errors = _code_and_name(record)
        description = record.get("description")
        if description and len(str(description)) > 500:
            errors.append("Description must be 500 characters or less")
        return errors
    if entity_type == "FunctionAppMapping":
        return (
            _required(record, "function_code", "Function Code")
            + _required(record, "application_code", "Application Code")
        )
    if entity_type == "AppDeptMapping":
        return (
            _required(record, "application_code", "Application Code")
            + _required(record, "department_code", "Department Code")
        )
    if entity_type == "User":
        return _validate_user(record)
    return [f"Unknown entity type: {entity_type}"]


class TemplateParser:
    """Reads an uploaded xlsx workbook into validated records"""

    def __init__(self, header_row: int = 1, start_row: int = 2):
        self.header_row = header_row
        self.start_row = start_row

    def parse_excel_file(self, content: bytes, entity_type: str) -> Dict[str, Any]:
        entity_type = normalize_entity_type(entity_type)
        column_mapping = COLUMN_MAPPINGS[entity_type]

        try:
            workbook = load_workbook(BytesIO(content), data_only=True)
        except (InvalidFileException, BadZipFile, OSError, KeyError, ValueError) as e:
            logger.error(f"[TemplateParser] Failed to open workbook: {e}")
            raise ValidationError(f"Failed to parse Excel file: {e}")

        if not workbook.worksheets:
            raise ValidationError("Excel file is empty or invalid")
        worksheet = workbook.worksheets[0]

        headers = [
            str(value).strip() if value is not None else ""
            for value in next(
                worksheet.iter_rows(min_row=self.header_row, max_row=self.header_row, values_only=True),
                (),
            )
        ]

        missing = [column for column in column_mapping if column not in headers]
        if missing:
            raise ValidationError(
                f"Missing required columns: {', '.join(missing)}",
                details=[{"row": self.header_row, "error": f"Missing columns: {', '.join(missing)}"}],
            )

        valid_records: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        total = 0

        for row_number, values in enumerate(
            worksheet.iter_rows(min_row=self.start_row, values_only=True), start=self.start_row
        ):
            if all(_blank(v) for v in values):
                continue
            total += 1

            record: Dict[str, Any] = {}
            for header, value in zip(headers, values):
                field = column_mapping.get(header)
                if field:
                    record[field] = cell_text(value)

            row_errors = validate_record(record, entity_type)
            if row_errors:
                errors.append({"row": row_number, "data": record, "errors": row_errors})
            else:
                valid_records.append({"row": row_number, "data": record})

        logger.info(
            f"[TemplateParser] Parsed {entity_type}: {total} rows, "
            f"{len(valid_records)} valid, {len(errors)} invalid"
        )

        return {
            "success": not errors,
            "total_rows": total,
            "valid_records": valid_records,
            "errors": errors,
            "summary": {"valid": len(valid_records), "invalid": len(errors), "total": total},
        }

    @staticmethod
    def generate_error_report(errors: List[Dict[str, Any]]) -> str:
        if not errors:
            return "No errors"

        lines = [f"Found {len(errors)} error(s):", ""]
        for index, error in enumerate(errors, start=1):
            lines.append(f"Error {index} (Row {error['row']}):")
            lines.append(f"  Data: {json.dumps(error['data'], default=str)}")
            lines.append("  Issues:")
            lines.extend(f"    - {issue}" for issue in error["errors"])
            lines.append("")
        return "\n".join(lines)


template_parser = TemplateParser()
