"""Column types shared by the table definitions"""
import json
import uuid
from typing import Any, Optional

from sqlalchemy import String, Text, TypeDecorator


def generate_uuid() -> str:
    return str(uuid.uuid4())


class GUID(TypeDecorator):
    """
    UUID keys stored as 36-character text on every backend.

    Both directions normalize to lower-case strings, so ids arriving in JSON
    bodies, JWT claims or result rows compare equal.
    """
    impl = String(36)
    cache_ok = True

    @staticmethod
    def _normalize(value: Any) -> Optional[str]:
        return None if value is None else str(value).lower()

    def process_bind_param(self, value, dialect):
        return self._normalize(value)

    def process_result_value(self, value, dialect):
        return self._normalize(value)


class JSONText(TypeDecorator):
    """JSON document kept in a TEXT column (configuration, criteria, sync details)"""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    def process_result_value(self, value, dialect):
        if not value:
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value
