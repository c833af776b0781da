# offsite_api/services/sequence.py
"""
Human-readable identifiers backed by a per-category counter row.

The advance is one INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement,
so two callers can never observe the same value and there is no
read-then-write window. The statement runs inside the caller's transaction:
if the parent operation rolls back, the id and the counter advance are
discarded together.
"""
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from offsite_api.common.errors import SequenceUnavailable
from offsite_api.extensions import db
from offsite_api.models.sequence import SequenceCounter

log = logging.getLogger(__name__)

# role -> two-letter code used in OffSite user ids (OSSE0001, OSPM0001, ...)
ROLE_CODES = {
    "engineer": "SE",
    "manager": "PM",
    "owner": "OW",
    "purchase_manager": "PR",
    "contractor": "CT",
}

LABOUR_CATEGORY = "LAB"


def _upsert_insert():
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise SequenceUnavailable(message=f"Atomic counters not supported on {dialect}")
    return insert


def next_seq(category: str) -> int:
    """Advance the counter for `category` (creating it at zero) and return the new value."""
    if not category:
        raise ValueError("category is required")
    insert = _upsert_insert()
    stmt = (
        insert(SequenceCounter)
        .values(category=category, seq=1)
        .on_conflict_do_update(
            index_elements=[SequenceCounter.category],
            set_={"seq": SequenceCounter.seq + 1},
        )
        .returning(SequenceCounter.seq)
    )
    try:
        value = db.session.execute(stmt).scalar_one()
    except SQLAlchemyError as e:
        log.warning("sequence advance failed for %s: %s", category, e)
        raise SequenceUnavailable(
            message="Could not allocate identifier, please retry",
            payload={"category": category},
        ) from e
    log.debug("sequence %s -> %s", category, value)
    return int(value)


def issue_id(category: str, width: int = 4) -> str:
    return f"{category}{next_seq(category):0{width}d}"


def offsite_id_for_role(role: str) -> str:
    code = ROLE_CODES.get(role)
    if not code:
        raise ValueError(f"no id prefix for role {role!r}")
    return issue_id(f"OS{code}")


def labour_code() -> str:
    return issue_id(LABOUR_CATEGORY)


def financial_year(on: date) -> str:
    """April-March year label, e.g. 2026-01-15 -> '2025-26'."""
    start = on.year if on.month >= 4 else on.year - 1
    return f"{start}-{str(start + 1)[-2:]}"


def invoice_number(on: date) -> str:
    # counter is per financial year so numbering restarts each April
    return issue_id(f"OS/CI/{financial_year(on)}/")
