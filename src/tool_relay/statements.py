# statements.py
# Statement-class dispatch for the generic SQL capability.
#
# A syntactic heuristic, not a SQL parser:
#   SCRIPT  more than one statement (a ';' before the end of the text)
#   READ    first keyword in the read allow-list; rows are returned
#   MUTATE  anything else; affected-row count and insert id are returned
#
# Precision boundary: a ';' inside a string literal makes the text a SCRIPT.
# It still runs, it just returns no rows. A mutating statement hidden behind
# a read keyword is always caught by the SCRIPT branch first.
#
# Store errors (syntax, constraints) are never caught here.

import re
import sqlite3
from enum import Enum
from typing import Any

READ_KEYWORDS: tuple[str, ...] = ("SELECT", "PRAGMA", "EXPLAIN")

_INSERT_KEYWORDS = ("INSERT", "REPLACE")
_FIRST_WORD = re.compile(r"\s*([A-Za-z_]+)")


class StatementClass(str, Enum):
    READ = "read"
    MUTATE = "mutate"
    SCRIPT = "script"


def _first_keyword(sql: str) -> str:
    match = _FIRST_WORD.match(sql)
    return match.group(1).upper() if match else ""


def classify(sql: str, read_keywords: tuple[str, ...] = READ_KEYWORDS) -> StatementClass:
    body = sql.strip().rstrip(";").rstrip()
    if ";" in body:
        return StatementClass.SCRIPT
    if _first_keyword(body) in {k.upper() for k in read_keywords}:
        return StatementClass.READ
    return StatementClass.MUTATE


def execute(
    conn: sqlite3.Connection,
    sql: str,
    read_keywords: tuple[str, ...] = READ_KEYWORDS,
) -> Any:
    """
    Run `sql` in the mode its class calls for.

    READ   → list of row dicts, in cursor order
    MUTATE → {"changes": n} plus "last_insert_rowid" for INSERT/REPLACE
    SCRIPT → {"ok": True}; best-effort, non-atomic unless the script itself
             opens a transaction
    """
    statement_class = classify(sql, read_keywords)

    if statement_class is StatementClass.SCRIPT:
        conn.executescript(sql)
        return {"ok": True}

    cursor = conn.execute(sql)
    try:
        if statement_class is StatementClass.READ:
            columns = [col[0] for col in cursor.description or ()]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

        # sqlite3 reports -1 for statements that change no rows (DDL and the like).
        result: dict[str, Any] = {"changes": max(cursor.rowcount, 0)}
        if _first_keyword(sql) in _INSERT_KEYWORDS and cursor.lastrowid is not None:
            result["last_insert_rowid"] = cursor.lastrowid
        return result
    finally:
        cursor.close()
