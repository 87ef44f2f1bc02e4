"""
Identifier column stored as a canonical 36-character UUID string.

PostgreSQL and SQLite both see plain varchar, so equality filters never mix
uuid and text operands.
"""
import uuid
from sqlalchemy import TypeDecorator, String


class UUIDType(TypeDecorator):
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        try:
            return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))
        except ValueError:
            raise ValueError(f"Not a UUID: {value!r}")

    def process_result_value(self, value, dialect):
        return None if value is None else str(value)


def generate_uuid() -> str:
    return str(uuid.uuid4())
