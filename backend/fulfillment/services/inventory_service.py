# Overview: Service-layer operations for card inventory; imports, expiry, stock projection.

from __future__ import annotations

import csv
import io
import secrets
from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CardBatch, CardUnit
from ..models.cards import UNIT_AVAILABLE, UNIT_EXPIRED, UNIT_SOLD, UNIT_STATUSES
from ..time_utils import coerce_expiry, utcnow
from . import catalog_service, notification_service
from .concurrency import run_with_retry
from .errors import Conflict, NotFound, ValidationError
from .reservation_service import count_sellable  # noqa: F401

"""
Inventory Invariants (authoritative)

- (tenant_id, code) is unique. Duplicates are rejected per row, never fatal
  for the whole import.
- Every import call records exactly one CardBatch, even when all rows fail.
- stock_count / is_available on CardProduct are a cache of the AVAILABLE unit
  count and are recomputed after every change that can move it.
- Only AVAILABLE units may be deleted; sold or reserved units are history.
"""

CODE_KEYS = ("code", "card_code", "cardCode", "serial", "serial_number", "Card Code", "Code", "CODE")
PIN_KEYS = ("pin", "card_pin", "cardPin", "password", "PIN", "Pin", "Card PIN")
EXPIRY_KEYS = ("expiry", "expires_at", "expiry_date", "expiryDate", "expiresAt", "Expiry Date", "Expiry")


@dataclass
class ImportResult:
    batch_id: int
    batch_number: str
    total_processed: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "total_processed": self.total_processed,
            "valid_count": self.valid_count,
            "invalid_count": self.invalid_count,
            "errors": list(self.errors),
        }


def _first_value(row: dict[str, Any], keys: Iterable[str]):
    for key in keys:
        value = row.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def _batch_number(prefix: str) -> str:
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{secrets.token_hex(3).upper()}"


def refresh_stock_counts(tenant_id: int, product_ids: Iterable[int]) -> dict[int, int]:
    """
    Recompute the cached stock counter for the given products and commit.

    Emits a low-stock notification when the remaining AVAILABLE count is at or
    below LOW_STOCK_THRESHOLD. Returns {product_id: remaining}.
    """
    product_ids = sorted(set(pid for pid in product_ids if pid is not None))
    if not product_ids:
        return {}

    def _op():
        rows = (
            db.session.query(CardUnit.product_id, func.count(CardUnit.id))
            .filter(CardUnit.product_id.in_(product_ids), CardUnit.status == UNIT_AVAILABLE)
            .group_by(CardUnit.product_id)
            .all()
        )
        counts = {pid: 0 for pid in product_ids}
        counts.update({pid: count for pid, count in rows})

        for pid, count in counts.items():
            catalog_service.set_stock_count(pid, count)
        db.session.commit()
        return counts

    counts = run_with_retry(_op)

    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    for pid, count in counts.items():
        if count <= threshold:
            notification_service.notify_low_stock(tenant_id, pid, count)
    return counts


def import_units(
    tenant_id: int,
    product_id: int,
    rows: list[dict[str, Any]],
    imported_by: int | None = None,
    file_name: str = "Manual Import",
    *,
    batch_prefix: str = "MANUAL",
) -> ImportResult:
    """
    Import card codes for a product.

    Each row is inserted inside its own savepoint, so a duplicate that slips
    past the pre-check (a concurrent import) only fails that row.
    """
    catalog_service.get_product(tenant_id, product_id)
    if not isinstance(rows, list):
        raise ValidationError("cards must be a list")

    error_limit = current_app.config.get("IMPORT_ERROR_LIMIT", 50)
    batch_number = _batch_number(batch_prefix)
    errors: list[str] = []
    valid = 0
    invalid = 0

    def _reject(message: str) -> None:
        nonlocal invalid
        invalid += 1
        if len(errors) < error_limit:
            errors.append(message)

    candidate_codes = [
        str(_first_value(row, CODE_KEYS))
        for row in rows
        if isinstance(row, dict) and _first_value(row, CODE_KEYS) is not None
    ]
    existing = set()
    if candidate_codes:
        existing = {
            code
            for (code,) in db.session.query(CardUnit.code)
            .filter(CardUnit.tenant_id == tenant_id, CardUnit.code.in_(candidate_codes))
            .all()
        }

    seen: set[str] = set()
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            _reject(f"Row {index}: not an object")
            continue

        code = _first_value(row, CODE_KEYS)
        if code is None:
            _reject(f"Row {index}: missing code")
            continue
        code = str(code)

        if code in existing:
            _reject(f"Row {index}: duplicate code {code}")
            continue
        if code in seen:
            _reject(f"Row {index}: duplicate code {code} in this import")
            continue
        seen.add(code)

        pin = _first_value(row, PIN_KEYS)
        unit = CardUnit(
            tenant_id=tenant_id,
            product_id=product_id,
            code=code,
            pin=str(pin) if pin is not None else None,
            expires_at=coerce_expiry(_first_value(row, EXPIRY_KEYS)),
            status=UNIT_AVAILABLE,
            batch_number=batch_number,
            imported_at=utcnow(),
        )
        try:
            with db.session.begin_nested():
                db.session.add(unit)
        except IntegrityError:
            _reject(f"Row {index}: duplicate code {code}")
            continue
        valid += 1

    batch = CardBatch(
        tenant_id=tenant_id,
        product_id=product_id,
        batch_number=batch_number,
        file_name=file_name,
        total_cards=len(rows),
        valid_cards=valid,
        invalid_cards=invalid,
        imported_by_id=imported_by,
    )
    db.session.add(batch)
    db.session.commit()

    refresh_stock_counts(tenant_id, [product_id])

    current_app.logger.info(
        "Imported batch %s for product %s: %s valid, %s invalid",
        batch_number, product_id, valid, invalid,
    )
    return ImportResult(
        batch_id=batch.id,
        batch_number=batch_number,
        total_processed=len(rows),
        valid_count=valid,
        invalid_count=invalid,
        errors=errors,
    )


def import_units_from_csv(
    tenant_id: int,
    product_id: int,
    stream,
    file_name: str,
    imported_by: int | None = None,
) -> ImportResult:
    """Parse a CSV file with a header row and import its rows."""
    raw = stream.read() if hasattr(stream, "read") else stream
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("File must be UTF-8 encoded CSV")
    if not raw or not raw.strip():
        raise ValidationError("File is empty")

    reader = csv.DictReader(io.StringIO(raw))
    if not reader.fieldnames:
        raise ValidationError("File has no header row")
    rows = [dict(r) for r in reader]
    if not rows:
        raise ValidationError("File contains no data rows")

    return import_units(
        tenant_id,
        product_id,
        rows,
        imported_by=imported_by,
        file_name=file_name,
        batch_prefix="BATCH",
    )


def mark_expired(tenant_id: int) -> int:
    """
    AVAILABLE -> EXPIRED for units whose expiry has passed.

    Idempotent; intended to run on a timer. Returns the number of units expired.
    """
    now = utcnow()
    expiring = (
        db.session.query(CardUnit.product_id)
        .filter(
            CardUnit.tenant_id == tenant_id,
            CardUnit.status == UNIT_AVAILABLE,
            CardUnit.expires_at.isnot(None),
            CardUnit.expires_at <= now,
        )
        .distinct()
        .all()
    )
    product_ids = [pid for (pid,) in expiring]
    if not product_ids:
        return 0

    result = db.session.execute(
        update(CardUnit)
        .where(
            CardUnit.tenant_id == tenant_id,
            CardUnit.status == UNIT_AVAILABLE,
            CardUnit.expires_at.isnot(None),
            CardUnit.expires_at <= now,
        )
        .values(status=UNIT_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount or 0
    db.session.commit()

    refresh_stock_counts(tenant_id, product_ids)
    current_app.logger.info("Marked %s cards as expired (tenant %s)", expired, tenant_id)
    return expired


def delete_unit(tenant_id: int, unit_id: int) -> None:
    unit = db.session.query(CardUnit).filter_by(id=unit_id, tenant_id=tenant_id).first()
    if unit is None:
        raise NotFound("Card not found", details={"unit_id": unit_id})

    product_id = unit.product_id
    status = unit.status

    # Conditional delete so a concurrent reservation wins over the admin
    deleted = (
        db.session.query(CardUnit)
        .filter(CardUnit.id == unit_id, CardUnit.status == UNIT_AVAILABLE)
        .delete(synchronize_session=False)
    )
    if not deleted:
        db.session.rollback()
        raise Conflict(
            "Only available cards can be deleted",
            details={"unit_id": unit_id, "status": status},
        )
    db.session.expunge(unit)
    db.session.commit()
    refresh_stock_counts(tenant_id, [product_id])


def list_units(
    tenant_id: int,
    product_id: int,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    catalog_service.get_product(tenant_id, product_id)
    if status is not None and status not in UNIT_STATUSES:
        raise ValidationError(f"status must be one of {list(UNIT_STATUSES)}")
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    query = db.session.query(CardUnit).filter_by(tenant_id=tenant_id, product_id=product_id)
    if status:
        query = query.filter(CardUnit.status == status)
    total = query.count()
    units = (
        query.order_by(CardUnit.imported_at.desc(), CardUnit.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [u.to_dict() for u in units],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def list_batches(tenant_id: int, product_id: int | None = None) -> list[CardBatch]:
    query = db.session.query(CardBatch).filter_by(tenant_id=tenant_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.order_by(CardBatch.imported_at.desc(), CardBatch.id.desc()).all()


def get_user_purchased_units(tenant_id: int, buyer_id: int, page: int = 1, limit: int = 20) -> dict:
    """Sold units owned by a buyer, newest first, with codes revealed."""
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    query = db.session.query(CardUnit).filter_by(
        tenant_id=tenant_id, buyer_id=buyer_id, status=UNIT_SOLD
    )
    total = query.count()
    units = (
        query.order_by(CardUnit.sold_at.desc(), CardUnit.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [u.to_dict(reveal=True) for u in units],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def get_status_counts(tenant_id: int, product_id: int) -> dict[str, int]:
    rows = (
        db.session.query(CardUnit.status, func.count(CardUnit.id))
        .filter(CardUnit.tenant_id == tenant_id, CardUnit.product_id == product_id)
        .group_by(CardUnit.status)
        .all()
    )
    counts = {status: 0 for status in UNIT_STATUSES}
    counts.update({status: count for status, count in rows})
    counts["total"] = sum(count for _, count in rows)
    return counts
