"""Request canonicalization and content fingerprints for the plan cache."""
from __future__ import annotations

import csv
import hashlib
import io
import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from backend.src.config import MIN_INVENTORY_CHARS
from backend.src.errors import InvalidInputError
from backend.src.models import CalendarContext, CanonicalRequest, InventoryLine

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = ","


def compute_fingerprint(
    inventory_text: str, instruction_text: str, context: CalendarContext
) -> str:
    """Hash the exact request inputs into a stable SHA-256 hex digest.

    The inputs are encoded as an ASCII-only JSON array with sorted keys, so
    separators inside the free-text fields are escaped, key order cannot
    drift, and any code point (lone surrogates included) encodes.
    """
    payload = [inventory_text, instruction_text, context.model_dump(mode="json")]
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("ascii")
    return hashlib.sha256(raw).hexdigest()


def _parse_row(row: List[str]) -> Optional[InventoryLine]:
    cells = [cell.strip() for cell in row]
    if len(cells) < 5:
        return None
    name, stock, unit, usage, price = cells[:5]
    try:
        return InventoryLine(
            name=name,
            current_stock=float(stock),
            unit=unit,
            avg_daily_usage=float(usage),
            market_price=float(price),
        )
    except (ValueError, ValidationError):
        return None


def parse_inventory(inventory_text: str) -> tuple[InventoryLine, ...]:
    """Parse inventory CSV rows ``name, stock, unit, usage, price`` in order.

    A leading header row is skipped. Other rows that do not parse are
    skipped with a warning.
    """
    lines: List[InventoryLine] = []
    seen_data = False
    for row_no, row in enumerate(csv.reader(io.StringIO(inventory_text.strip())), start=1):
        if not any(cell.strip() for cell in row):
            continue
        line = _parse_row(row)
        if line is None:
            if seen_data:
                logger.warning(f"Skipping unparseable inventory row {row_no}: {row!r}")
            else:
                logger.debug(f"Treating row {row_no} as header: {row!r}")
            seen_data = True
            continue
        seen_data = True
        lines.append(line)
    return tuple(lines)


def check_inventory_text(inventory_text: str) -> None:
    """Cheap syntactic sanity check run before any engine call."""
    if not inventory_text or not inventory_text.strip():
        raise InvalidInputError("Invalid Data: inventory CSV is empty.")
    if len(inventory_text) < MIN_INVENTORY_CHARS:
        raise InvalidInputError(
            f"Invalid Data: inventory CSV is shorter than {MIN_INVENTORY_CHARS} characters."
        )
    if FIELD_SEPARATOR not in inventory_text:
        raise InvalidInputError("Invalid Data: inventory CSV contains no ',' separator.")


def check_horizon(horizon_days: int) -> None:
    """The horizon must be a whole number of days, at least one."""
    if isinstance(horizon_days, bool) or not isinstance(horizon_days, int) or horizon_days < 1:
        raise InvalidInputError(
            f"Invalid horizon: expected a whole number of days >= 1, got {horizon_days!r}."
        )


def check_encodable(field: str, text: str) -> None:
    """Reject text that cannot be stored or sent as UTF-8, e.g. lone surrogates."""
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidInputError(
            f"Invalid Data: {field} contains characters that are not valid UTF-8 ({e.reason})."
        ) from e


def canonicalize(
    inventory_text: str,
    instruction_text: str,
    context: CalendarContext,
    horizon_days: int,
) -> tuple[CanonicalRequest, str]:
    """Validate the raw inputs and return the canonical request and its fingerprint."""
    check_inventory_text(inventory_text)
    check_horizon(horizon_days)
    instruction_text = instruction_text or ""
    check_encodable("inventory CSV", inventory_text)
    check_encodable("instruction", instruction_text)
    if context.horizon_days != horizon_days:
        raise InvalidInputError(
            f"Calendar context covers {context.horizon_days} days but the request asks for {horizon_days}."
        )

    lines = parse_inventory(inventory_text)
    if not lines:
        raise InvalidInputError("Invalid Data: no inventory row could be parsed.")

    request = CanonicalRequest(
        inventory_text=inventory_text,
        instruction_text=instruction_text,
        horizon_days=horizon_days,
        context=context,
        lines=lines,
    )
    return request, compute_fingerprint(inventory_text, instruction_text, context)
