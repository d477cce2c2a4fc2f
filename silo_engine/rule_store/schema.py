"""SQLite schema for the rule store.

Notes
-----
Rules reference containers by cookieStoreId with ``ON DELETE CASCADE`` so a
container deletion removes its rules in the same transaction. SQLite only
enforces this when ``PRAGMA foreign_keys`` is on for the connection.
"""

from __future__ import annotations

SCHEMA_VERSION = 1

SCHEMA_V1 = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS store_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS containers (
    cookie_store_id TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    color           TEXT NOT NULL,
    icon            TEXT NOT NULL,
    temporary       INTEGER NOT NULL DEFAULT 0,
    sync_enabled    INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT NOT NULL DEFAULT '{}',
    position        INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS rules (
    rule_id      TEXT PRIMARY KEY,
    pattern      TEXT NOT NULL,
    match_type   TEXT NOT NULL CHECK(match_type IN ('exact','domain','glob','regex')),
    rule_type    TEXT NOT NULL CHECK(rule_type IN ('include','exclude','restrict')),
    container_id TEXT NULL,
    priority     INTEGER NOT NULL,
    enabled      INTEGER NOT NULL DEFAULT 1,
    created      INTEGER NOT NULL DEFAULT 0,
    modified     INTEGER NOT NULL DEFAULT 0,
    metadata     TEXT NOT NULL DEFAULT '{}',
    position     INTEGER NOT NULL,
    FOREIGN KEY (container_id) REFERENCES containers(cookie_store_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_rules_container ON rules(container_id);
CREATE INDEX IF NOT EXISTS idx_rules_position ON rules(position);
"""
