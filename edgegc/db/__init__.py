# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Relational Store - Connection adapters and reference schema.
"""

from edgegc.db.connection import (
    Database,
    Executor,
    PostgresDatabase,
    SQLiteDatabase,
    connect_database,
    to_postgres_placeholders,
)
from edgegc.db.schema import init_schema, schema_statements

__all__ = [
    "Database",
    "Executor",
    "PostgresDatabase",
    "SQLiteDatabase",
    "connect_database",
    "to_postgres_placeholders",
    "init_schema",
    "schema_statements",
]
