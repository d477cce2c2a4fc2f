"""
SQLite implementation of RulePersistence.

This module owns the on-disk persistence format for containers and rules. The
engine never depends on it; :class:`~silo_engine.rule_store.store.RuleStore`
only talks to the :class:`~silo_engine.rule_store.api.RulePersistence` Protocol.

Threading
---------
Each call opens its own short-lived connection, so a persistence instance may
be used from whichever thread holds the store's mutation lock.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from ..data_models import Container, ContainerMetadata, MatchType, Rule, RuleMetadata, RuleType
from ..errors import RuleStoreError
from ..settings import load_settings, resolve_data_root, store_db_path
from .schema import SCHEMA_V1, SCHEMA_VERSION
from .store import RuleStore


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """Record the schema version, refusing databases written by a newer one."""
    row = conn.execute("SELECT value FROM store_meta WHERE key = 'schema_version'").fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO store_meta(key, value) VALUES('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        return
    if int(row["value"]) > SCHEMA_VERSION:
        raise RuleStoreError(
            f"Rule database schema {row['value']} is newer than supported ({SCHEMA_VERSION})."
        )


def _rule_from_row(row: sqlite3.Row) -> Rule:
    return Rule(
        id=str(row["rule_id"]),
        pattern=str(row["pattern"]),
        match_type=MatchType(str(row["match_type"])),
        rule_type=RuleType(str(row["rule_type"])),
        container_id=str(row["container_id"]) if row["container_id"] is not None else None,
        priority=int(row["priority"]),
        enabled=bool(row["enabled"]),
        created=int(row["created"]),
        modified=int(row["modified"]),
        metadata=RuleMetadata.from_dict(json.loads(row["metadata"])),
    )


def _container_from_row(row: sqlite3.Row) -> Container:
    return Container(
        cookie_store_id=str(row["cookie_store_id"]),
        name=str(row["name"]),
        color=str(row["color"]),
        icon=str(row["icon"]),
        temporary=bool(row["temporary"]),
        sync_enabled=bool(row["sync_enabled"]),
        metadata=ContainerMetadata.from_dict(json.loads(row["metadata"])),
    )


@dataclass(frozen=True, slots=True)
class SqliteRulePersistence:
    """
    SQLite-backed RulePersistence.

    Parameters
    ----------
    db_path:
        Path to the SQLite database.

    Notes
    -----
    The database file is created if absent. The parent directory is created as
    needed.
    """

    db_path: Path

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.executescript(SCHEMA_V1)
            _ensure_schema(conn)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise RuleStoreError(f"Rule database error: {self.db_path} ({exc!s})") from exc
        finally:
            conn.close()

    def load_containers(self) -> Sequence[Container]:
        """See RulePersistence.load_containers."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM containers ORDER BY position ASC").fetchall()
        return [_container_from_row(r) for r in rows]

    def load_rules(self) -> Sequence[tuple[int, Rule]]:
        """See RulePersistence.load_rules."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM rules ORDER BY position ASC").fetchall()
        return [(int(r["position"]), _rule_from_row(r)) for r in rows]

    def save_container(self, container: Container) -> None:
        """See RulePersistence.save_container."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO containers(cookie_store_id, name, color, icon, temporary, "
                "sync_enabled, metadata, position) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, "
                "(SELECT COALESCE(MAX(position), -1) + 1 FROM containers)) "
                "ON CONFLICT(cookie_store_id) DO UPDATE SET name = excluded.name, "
                "color = excluded.color, icon = excluded.icon, temporary = excluded.temporary, "
                "sync_enabled = excluded.sync_enabled, metadata = excluded.metadata",
                (
                    container.cookie_store_id,
                    container.name,
                    container.color,
                    container.icon,
                    int(container.temporary),
                    int(container.sync_enabled),
                    json.dumps(container.metadata.to_dict(), sort_keys=True),
                ),
            )

    def delete_container(self, cookie_store_id: str) -> None:
        """See RulePersistence.delete_container. Rules cascade via the foreign key."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM containers WHERE cookie_store_id = ?", (cookie_store_id,))

    def save_rules(self, rules: Sequence[tuple[int, Rule]]) -> None:
        """See RulePersistence.save_rules."""
        with self._transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO rules(rule_id, pattern, match_type, rule_type, "
                "container_id, priority, enabled, created, modified, metadata, position) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        rule.id,
                        rule.pattern,
                        rule.match_type.value,
                        rule.rule_type.value,
                        rule.container_id,
                        rule.priority,
                        int(rule.enabled),
                        rule.created,
                        rule.modified,
                        json.dumps(rule.metadata.to_dict(), sort_keys=True),
                        position,
                    )
                    for position, rule in rules
                ],
            )

    def delete_rule(self, rule_id: str) -> None:
        """See RulePersistence.delete_rule."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM rules WHERE rule_id = ?", (rule_id,))


def open_rule_store(data_root: Path | None = None) -> RuleStore:
    """
    Convenience constructor for a SQLite-backed rule store.

    Parameters
    ----------
    data_root:
        Optional override for the Silo data root.

    Returns
    -------
    RuleStore
        Store loaded from ``<data_root>/silo.sqlite`` using the persisted
        engine settings.
    """
    root = resolve_data_root(data_root)
    settings = load_settings(data_root=root)
    persistence = SqliteRulePersistence(db_path=store_db_path(root))
    return RuleStore(persistence, options=settings.matcher_options())
