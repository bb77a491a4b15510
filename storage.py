"""Key-value persistence for the budget state.

Every collection lives under one key as a JSON document in ``stored_values``.
Reads happen once at load time; writes replace the whole value for a key.
Failures are logged and reported through return values, never raised: the
in-memory state owned by ``services.ExpenseStore`` stays authoritative.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import StorageKey, StoredValue

logger = logging.getLogger(__name__)

KeyLike = Union[StorageKey, str]


def _key_name(key: KeyLike) -> str:
    return key.value if isinstance(key, StorageKey) else key


class KeyValueStorage:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def load_all(self) -> dict[str, Any]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(select(StoredValue)).all()
                raw = {row.key: row.value for row in rows}
        except SQLAlchemyError:
            logger.exception("storage_load_failed: falling back to defaults")
            return {}

        values: dict[str, Any] = {}
        for key, payload in raw.items():
            try:
                values[key] = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning(f"storage_value_corrupt: key={key}")
        return values

    def write(self, key: KeyLike, value: Any) -> bool:
        name = _key_name(key)
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError):
            logger.exception(f"storage_encode_failed: key={name}")
            return False
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(StoredValue, name)
                if row is None:
                    session.add(StoredValue(key=name, value=payload))
                else:
                    row.value = payload
        except SQLAlchemyError:
            logger.exception(f"storage_write_failed: key={name}")
            return False
        return True

