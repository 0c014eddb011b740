from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session


def next_document_number(
    db: Session,
    *,
    number_column: InstrumentedAttribute,
    company_column: InstrumentedAttribute,
    company_id: str,
    prefix: str,
) -> str:
    """Next `<prefix>-<year>-<6-digit seq>` for the company; the sequence restarts every year."""
    year = datetime.now(timezone.utc).year
    stem = f"{prefix}-{year}-"
    last_number = db.execute(
        select(number_column)
        .where(company_column == company_id, number_column.like(f"{stem}%"))
        .order_by(number_column.desc())
        .limit(1)
    ).scalar_one_or_none()

    sequence = 1
    if last_number:
        sequence = int(last_number[len(stem):]) + 1
    return f"{stem}{sequence:06d}"
