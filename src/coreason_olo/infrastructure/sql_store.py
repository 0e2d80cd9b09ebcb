# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import asyncio
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator, List, Optional, TypeVar, Union

from coreason_olo.core.interfaces import ConfigRecord, StoreUnavailableError, TemplateRecord
from coreason_olo.utils.logger import logger

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS olo_template (
    id VARCHAR(255) PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    description VARCHAR(255),
    canvas_json TEXT,
    config_json TEXT,
    built_in BOOLEAN DEFAULT FALSE
);

CREATE TABLE IF NOT EXISTS olo_config (
    id VARCHAR(255) PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    description VARCHAR(255),
    template_id VARCHAR(255),
    canvas_json TEXT,
    config_json TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
"""

RAG_TEMPLATE_CANVAS = (
    '{"nodes":[{"id":"n1","pluginId":"retriever","position":{"x":80,"y":100}},'
    '{"id":"n2","pluginId":"prompt-template","position":{"x":280,"y":100}},'
    '{"id":"n3","pluginId":"llm-inference","position":{"x":480,"y":100}}],'
    '"edges":[{"source":"n1","target":"n2"},{"source":"n2","target":"n3"}]}'
)

BUILT_IN_TEMPLATES = [
    ("tpl-empty", "Empty", "Start from scratch with no nodes", '{"nodes":[],"edges":[]}', "{}"),
    ("tpl-rag", "RAG Pipeline", "Retriever + Prompt + LLM reference", RAG_TEMPLATE_CANVAS, "{}"),
]

_CONFIG_COLUMNS = "id, name, description, template_id, canvas_json, config_json, created_at, updated_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_config(row: sqlite3.Row) -> ConfigRecord:
    return ConfigRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        template_id=row["template_id"],
        canvas_json=row["canvas_json"],
        config_json=row["config_json"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_template(row: sqlite3.Row) -> TemplateRecord:
    return TemplateRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        canvas_json=row["canvas_json"],
        config_json=row["config_json"],
        built_in=bool(row["built_in"]),
    )


class SqliteConfigStore:
    """
    Relational store for named configurations and templates.

    JSON columns are written and read back as the exact strings given. Blocking
    sqlite calls run in a worker thread.
    """

    def __init__(self, database_path: Union[str, Path]) -> None:
        self.database_path = Path(database_path)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self.database_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        def work() -> T:
            with self._connect() as conn:
                return operation(conn)

        try:
            return await asyncio.to_thread(work)
        except sqlite3.Error as e:
            logger.warning(f"Database unavailable: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e}") from e

    def init_db(self) -> None:
        """Creates the tables and seeds the built-in templates (idempotent)."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.executemany(
                "INSERT OR IGNORE INTO olo_template (id, name, description, canvas_json, config_json, built_in) "
                "VALUES (?, ?, ?, ?, ?, 1)",
                BUILT_IN_TEMPLATES,
            )
        logger.info(f"Database ready at {self.database_path}")

    async def upsert(self, record: ConfigRecord) -> ConfigRecord:
        def op(conn: sqlite3.Connection) -> ConfigRecord:
            now = _now()
            existing = conn.execute("SELECT id FROM olo_config WHERE name = ?", (record.name,)).fetchone()
            if existing is not None:
                conn.execute(
                    "UPDATE olo_config SET description = ?, template_id = ?, canvas_json = ?, config_json = ?, "
                    "updated_at = ? WHERE name = ?",
                    (record.description, record.template_id, record.canvas_json, record.config_json, now, record.name),
                )
            else:
                conn.execute(
                    f"INSERT INTO olo_config ({_CONFIG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        str(uuid.uuid4()),
                        record.name,
                        record.description,
                        record.template_id,
                        record.canvas_json,
                        record.config_json,
                        now,
                        now,
                    ),
                )
            row = conn.execute(f"SELECT {_CONFIG_COLUMNS} FROM olo_config WHERE name = ?", (record.name,)).fetchone()
            return _to_config(row)

        saved = await self._run(op)
        logger.debug(f"Upserted config {saved.name}")
        return saved

    async def get(self, name: str) -> Optional[ConfigRecord]:
        def op(conn: sqlite3.Connection) -> Optional[ConfigRecord]:
            row = conn.execute(f"SELECT {_CONFIG_COLUMNS} FROM olo_config WHERE name = ?", (name,)).fetchone()
            return _to_config(row) if row is not None else None

        return await self._run(op)

    async def delete(self, name: str) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM olo_config WHERE name = ?", (name,))

        await self._run(op)

    async def list_names(self) -> List[str]:
        def op(conn: sqlite3.Connection) -> List[str]:
            return [row["name"] for row in conn.execute("SELECT name FROM olo_config ORDER BY name")]

        return await self._run(op)

    async def list_all(self) -> List[ConfigRecord]:
        def op(conn: sqlite3.Connection) -> List[ConfigRecord]:
            rows = conn.execute(f"SELECT {_CONFIG_COLUMNS} FROM olo_config ORDER BY name").fetchall()
            return [_to_config(row) for row in rows]

        return await self._run(op)

    async def list_templates(self) -> List[TemplateRecord]:
        def op(conn: sqlite3.Connection) -> List[TemplateRecord]:
            rows = conn.execute("SELECT * FROM olo_template ORDER BY name").fetchall()
            return [_to_template(row) for row in rows]

        return await self._run(op)

    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        def op(conn: sqlite3.Connection) -> Optional[TemplateRecord]:
            row = conn.execute("SELECT * FROM olo_template WHERE id = ?", (template_id,)).fetchone()
            return _to_template(row) if row is not None else None

        return await self._run(op)

