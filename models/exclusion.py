"""
Storage-level exclusivity for conflict groups.

Reservations in HOLD/CONFIRMED and live manual blocks may never overlap on
[start, blocked_end) within one conflict group. The rule lives in the database:

* PostgreSQL: EXCLUDE USING gist per table, plus a cross-table trigger that
  serialises writers of one conflict group with a transaction advisory lock.
* SQLite: BEFORE INSERT/UPDATE triggers. SQLite allows one writer at a time,
  so the check and the write cannot interleave with another transaction.

Both raise an IntegrityError whose message carries the constraint name.
"""
from sqlalchemy import DDL, event
from sqlalchemy.exc import IntegrityError

from models.db import db

BOOKING_CONSTRAINT = "booking_no_overlap"
BLOCK_CONSTRAINT = "manual_block_no_overlap"

PG_EXCLUSION_VIOLATION = "23P01"

# ---------- SQLite ----------

_SQLITE_RESERVATION_CLASH = """
    SELECT RAISE(ABORT, '{name}')
    WHERE EXISTS (
        SELECT 1 FROM reservations r
        WHERE r.conflict_group_id = NEW.conflict_group_id
          AND r.deleted_at IS NULL
          AND r.status IN ('HOLD', 'CONFIRMED')
          AND r.start_at < NEW.{end_col}
          AND r.blocked_end_at > NEW.start_at
          {exclude_self}
    )
    OR EXISTS (
        SELECT 1 FROM manual_blocks b
        WHERE b.conflict_group_id = NEW.conflict_group_id
          AND b.deleted_at IS NULL
          AND b.start_at < NEW.{end_col}
          AND b.end_at > NEW.start_at
          {exclude_block}
    );
"""

_SQLITE_TRIGGERS = [
    f"""
    CREATE TRIGGER IF NOT EXISTS {BOOKING_CONSTRAINT}_insert
    BEFORE INSERT ON reservations
    WHEN NEW.deleted_at IS NULL AND NEW.status IN ('HOLD', 'CONFIRMED')
    BEGIN
    {_SQLITE_RESERVATION_CLASH.format(name=BOOKING_CONSTRAINT, end_col="blocked_end_at", exclude_self="", exclude_block="")}
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {BOOKING_CONSTRAINT}_update
    BEFORE UPDATE OF status, start_at, blocked_end_at, deleted_at, conflict_group_id ON reservations
    WHEN NEW.deleted_at IS NULL AND NEW.status IN ('HOLD', 'CONFIRMED')
    BEGIN
    {_SQLITE_RESERVATION_CLASH.format(name=BOOKING_CONSTRAINT, end_col="blocked_end_at", exclude_self="AND r.id != NEW.id", exclude_block="")}
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {BLOCK_CONSTRAINT}_insert
    BEFORE INSERT ON manual_blocks
    WHEN NEW.deleted_at IS NULL
    BEGIN
    {_SQLITE_RESERVATION_CLASH.format(name=BLOCK_CONSTRAINT, end_col="end_at", exclude_self="", exclude_block="")}
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {BLOCK_CONSTRAINT}_update
    BEFORE UPDATE OF start_at, end_at, deleted_at, conflict_group_id ON manual_blocks
    WHEN NEW.deleted_at IS NULL
    BEGIN
    {_SQLITE_RESERVATION_CLASH.format(name=BLOCK_CONSTRAINT, end_col="end_at", exclude_self="", exclude_block="AND b.id != NEW.id")}
    END
    """,
]

# ---------- PostgreSQL ----------

PG_PREPARE = ["CREATE EXTENSION IF NOT EXISTS btree_gist"]

PG_STATEMENTS = [
    f"""
    ALTER TABLE reservations ADD CONSTRAINT {BOOKING_CONSTRAINT}
    EXCLUDE USING gist (
        conflict_group_id WITH =,
        tsrange(start_at, blocked_end_at, '[)') WITH &&
    ) WHERE (deleted_at IS NULL AND status IN ('HOLD', 'CONFIRMED'))
    """,
    f"""
    ALTER TABLE manual_blocks ADD CONSTRAINT {BLOCK_CONSTRAINT}
    EXCLUDE USING gist (
        conflict_group_id WITH =,
        tsrange(start_at, end_at, '[)') WITH &&
    ) WHERE (deleted_at IS NULL)
    """,
    f"""
    CREATE OR REPLACE FUNCTION reservation_vs_blocks() RETURNS trigger AS $$
    BEGIN
        IF NEW.deleted_at IS NULL AND NEW.status IN ('HOLD', 'CONFIRMED') THEN
            PERFORM pg_advisory_xact_lock(hashtext(NEW.conflict_group_id));
            IF EXISTS (
                SELECT 1 FROM manual_blocks b
                WHERE b.conflict_group_id = NEW.conflict_group_id
                  AND b.deleted_at IS NULL
                  AND tsrange(b.start_at, b.end_at, '[)') && tsrange(NEW.start_at, NEW.blocked_end_at, '[)')
            ) THEN
                RAISE EXCEPTION '{BOOKING_CONSTRAINT}' USING ERRCODE = 'exclusion_violation';
            END IF;
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    f"""
    CREATE OR REPLACE FUNCTION block_vs_reservations() RETURNS trigger AS $$
    BEGIN
        IF NEW.deleted_at IS NULL THEN
            PERFORM pg_advisory_xact_lock(hashtext(NEW.conflict_group_id));
            IF EXISTS (
                SELECT 1 FROM reservations r
                WHERE r.conflict_group_id = NEW.conflict_group_id
                  AND r.deleted_at IS NULL
                  AND r.status IN ('HOLD', 'CONFIRMED')
                  AND tsrange(r.start_at, r.blocked_end_at, '[)') && tsrange(NEW.start_at, NEW.end_at, '[)')
            ) THEN
                RAISE EXCEPTION '{BLOCK_CONSTRAINT}' USING ERRCODE = 'exclusion_violation';
            END IF;
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE TRIGGER reservation_vs_blocks
    BEFORE INSERT OR UPDATE OF status, start_at, blocked_end_at, deleted_at ON reservations
    FOR EACH ROW EXECUTE FUNCTION reservation_vs_blocks()
    """,
    """
    CREATE TRIGGER block_vs_reservations
    BEFORE INSERT OR UPDATE OF start_at, end_at, deleted_at ON manual_blocks
    FOR EACH ROW EXECUTE FUNCTION block_vs_reservations()
    """,
]


def _attach():
    for stmt in PG_PREPARE:
        event.listen(db.metadata, "before_create", DDL(stmt).execute_if(dialect="postgresql"))
    for stmt in PG_STATEMENTS:
        event.listen(db.metadata, "after_create", DDL(stmt).execute_if(dialect="postgresql"))
    for stmt in _SQLITE_TRIGGERS:
        event.listen(db.metadata, "after_create", DDL(stmt).execute_if(dialect="sqlite"))


_attach()


def sqlite_trigger_statements() -> list[str]:
    return list(_SQLITE_TRIGGERS)


def is_overlap_violation(exc: IntegrityError) -> bool:
    """True when the IntegrityError came from the exclusivity rule, not another constraint."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == PG_EXCLUSION_VIOLATION:
        return True
    message = str(orig if orig is not None else exc)
    return BOOKING_CONSTRAINT in message or BLOCK_CONSTRAINT in message
