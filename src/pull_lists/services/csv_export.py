"""CSV export for homeowner rows.

Rows are de-duplicated on (address, mobile) first; the dynamic phone and
email column counts are then sized from the surviving rows so every line
has the same number of fields.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Iterable, List, NamedTuple, Tuple

from pull_lists.models import HomeownerRow
from pull_lists.services.homeowners import digits_only

logger = logging.getLogger(__name__)


BASE_COLUMNS = ["firstName", "lastName", "propertyAddress", "addy_two", "mobile"]


class CsvDocument(NamedTuple):
    text: str
    rows: List[HomeownerRow]
    max_phones: int
    max_emails: int


def dedupe_key(row: HomeownerRow) -> Tuple[str, str]:
    return (row.property_address.strip().lower(), digits_only(row.mobile))


def dedupe_homeowners(rows: Iterable[HomeownerRow]) -> List[HomeownerRow]:
    """Keep the first row per (address, mobile) key, preserving order."""
    seen = set()
    kept: List[HomeownerRow] = []
    for row in rows:
        key = dedupe_key(row)
        if key in seen:
            continue
        seen.add(key)
        kept.append(row)
    return kept


def column_widths(rows: Iterable[HomeownerRow]) -> Tuple[int, int]:
    max_phones = 0
    max_emails = 0
    for row in rows:
        max_phones = max(max_phones, len(row.phones))
        max_emails = max(max_emails, len(row.emails))
    return max_phones, max_emails


def csv_header(max_phones: int, max_emails: int) -> List[str]:
    header = list(BASE_COLUMNS)
    for i in range(1, max_phones + 1):
        header += [f"phone{i}", f"phone{i}_type"]
    header += [f"email{i}" for i in range(1, max_emails + 1)]
    return header


def csv_row(row: HomeownerRow, max_phones: int, max_emails: int) -> List[str]:
    fields = [
        row.first_name,
        row.last_name,
        row.property_address,
        row.street_address,
        row.mobile,
    ]
    for i in range(max_phones):
        if i < len(row.phones):
            fields += [row.phones[i].number, row.phones[i].type]
        else:
            fields += ["", ""]
    for i in range(max_emails):
        fields.append(row.emails[i] if i < len(row.emails) else "")
    return fields


def write_csv(rows: List[HomeownerRow], max_phones: int, max_emails: int) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(csv_header(max_phones, max_emails))
    for row in rows:
        writer.writerow(csv_row(row, max_phones, max_emails))
    return output.getvalue()


def build_homeowners_csv(rows: Iterable[HomeownerRow]) -> CsvDocument:
    """De-duplicate rows and render them as a rectangular CSV document."""
    kept = dedupe_homeowners(rows)
    max_phones, max_emails = column_widths(kept)
    text = write_csv(kept, max_phones, max_emails)
    logger.debug(
        "CSV built: rows=%d phone_pairs=%d email_cols=%d",
        len(kept),
        max_phones,
        max_emails,
    )
    return CsvDocument(text=text, rows=kept, max_phones=max_phones, max_emails=max_emails)


def empty_csv() -> str:
    """Header-only document for a region with no leads."""
    return write_csv([], 0, 0)
