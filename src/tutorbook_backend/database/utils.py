'''
Query helpers shared by the services.
'''
from typing import Any, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects import postgresql, sqlite
from ..common.logger import log

def apply_patch(obj: Any, patch: dict[str, Any], allowed_fields: Iterable[str] | None = None) -> list[str]:
    """
    Copies only the keys present in `patch` onto the ORM object.

    `patch` must come from `model_dump(exclude_unset=True)`: a key that is
    present with a None value clears the column, a missing key leaves it alone.
    Returns the names of the fields that were set.
    """
    allowed = set(allowed_fields) if allowed_fields is not None else None
    changed = []
    for field, value in patch.items():
        if allowed is not None and field not in allowed:
            continue
        setattr(obj, field, value)
        changed.append(field)
    return changed

def dialect_insert(db: AsyncSession, table):
    """
    Returns a dialect-specific INSERT construct that supports
    `on_conflict_do_update` for the bound database.
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    log.error(f"Upsert requested on unsupported dialect '{dialect_name}'.")
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'.")
