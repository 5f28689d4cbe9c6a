"""Homeowner extraction from DealMachine lead pages.

Each property lists its contacts under ``phone_numbers``. We keep only the
homeowner contact per property, and only when that contact has at least
one mobile ("W") phone.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from pull_lists.models import HomeownerRow, Phone

logger = logging.getLogger(__name__)


MOBILE_PHONE_TYPE = "W"
PHONE_SLOTS = (
    ("phone_1", "phone_1_type"),
    ("phone_2", "phone_2_type"),
    ("phone_3", "phone_3_type"),
)
EMAIL_SLOTS = ("email_address_1", "email_address_2", "email_address_3")

# Ownership hints may sit on the nested contact or on the entry itself.
CONTACT_FLAG_FIELDS = ("is_owner", "is_primary", "primary", "homeowner", "owner")
ENTRY_FLAG_FIELDS = ("is_owner", "is_primary", "homeowner")
CONTACT_HINT_FIELDS = ("role", "type", "relationship", "contact_type")
ENTRY_HINT_FIELDS = ("role", "type", "relationship")

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(value: Any) -> str:
    """Strip formatting from a phone number, keeping a leading '+'."""
    if value is None:
        return ""
    s = str(value).strip()
    if not s:
        return ""
    digits = _NON_DIGITS.sub("", s)
    return f"+{digits}" if s.startswith("+") else digits


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def capitalize_first_only(s: str) -> str:
    if not s:
        return s
    return s[:1].upper() + s[1:].lower()


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def contact_first_last(contact: Dict[str, Any]) -> Tuple[str, str]:
    """Resolve (first, last) from explicit fields, else from ``full_name``."""
    first = _text(contact.get("given_name"))
    last = _text(contact.get("surname"))

    if not first and not last:
        parts = _text(contact.get("full_name")).split()
        if len(parts) == 1:
            first = parts[0]
        elif len(parts) > 1:
            # Middle names/initials are dropped.
            first, last = parts[0], parts[-1]
    return first, last


def _truthy_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y")
    return False


class ContactHints(NamedTuple):
    """Ownership signals of one entry, flattened from the aliased fields."""

    owner_flag: bool
    role_hint: str


def normalize_contact_hints(entry: Dict[str, Any]) -> ContactHints:
    contact = entry.get("contact")
    if not isinstance(contact, dict):
        contact = {}

    flag_values = [contact.get(f) for f in CONTACT_FLAG_FIELDS]
    flag_values += [entry.get(f) for f in ENTRY_FLAG_FIELDS]

    hints = [contact.get(f) for f in CONTACT_HINT_FIELDS]
    hints += [entry.get(f) for f in ENTRY_HINT_FIELDS]
    role_hint = "|".join(h.lower() for h in hints if isinstance(h, str) and h)

    return ContactHints(
        owner_flag=any(_truthy_flag(v) for v in flag_values),
        role_hint=role_hint,
    )


# Evaluated in order; an entry is the homeowner if any rule matches.
HOMEOWNER_RULES: List[Tuple[str, Callable[[ContactHints], bool]]] = [
    ("owner_flag", lambda h: h.owner_flag),
    ("role_hint", lambda h: "owner" in h.role_hint or "homeowner" in h.role_hint),
]


def matching_rule(entry: Dict[str, Any]) -> Optional[str]:
    """Name of the first homeowner rule the entry satisfies, or None."""
    hints = normalize_contact_hints(entry)
    for name, predicate in HOMEOWNER_RULES:
        if predicate(hints):
            return name
    return None


def is_homeowner_entry(entry: Dict[str, Any]) -> bool:
    return matching_rule(entry) is not None


def select_homeowner_entry(prop: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pick the first homeowner-looking entry, falling back to the first entry."""
    entries = prop.get("phone_numbers")
    if not isinstance(entries, list):
        return None
    entries = [e for e in entries if isinstance(e, dict)]
    if not entries:
        return None
    for entry in entries:
        if is_homeowner_entry(entry):
            return entry
    return entries[0]


def _contact_phones(contact: Dict[str, Any]) -> Tuple[List[Phone], str]:
    seen = set()
    phones: List[Phone] = []
    mobile = ""
    for num_field, type_field in PHONE_SLOTS:
        number = normalize_phone(contact.get(num_field))
        phone_type = _text(contact.get(type_field))
        if not number or number in seen:
            continue
        seen.add(number)
        phones.append(Phone(number=number, type=phone_type))
        if not mobile and phone_type.upper() == MOBILE_PHONE_TYPE:
            mobile = number
    return phones, mobile


def parse_property(prop: Dict[str, Any]) -> Optional[HomeownerRow]:
    """Build the homeowner row for one property, or None when it is dropped."""
    entry = select_homeowner_entry(prop)
    if entry is None:
        return None
    contact = entry.get("contact")
    if not isinstance(contact, dict):
        return None

    phones, mobile = _contact_phones(contact)
    if not mobile:
        return None

    emails = [_text(contact.get(f)) for f in EMAIL_SLOTS]
    first, last = contact_first_last(contact)
    raw_address = prop.get("property_address_full")
    address = "" if raw_address is None else str(raw_address)

    return HomeownerRow(
        first_name=capitalize_first_only(first),
        last_name=last,
        property_address=address,
        street_address=address.split(",")[0].strip(),
        mobile=mobile,
        phones=phones,
        emails=[e for e in emails if e],
    )


def extract_properties(raw_page: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_page, dict):
        return []
    results = raw_page.get("results")
    if not isinstance(results, dict):
        return []
    props = results.get("properties")
    if not isinstance(props, list):
        return []
    return [p for p in props if isinstance(p, dict)]


def parse_homeowners(properties: Iterable[Dict[str, Any]]) -> List[HomeownerRow]:
    rows: List[HomeownerRow] = []
    for prop in properties:
        row = parse_property(prop)
        if row is not None:
            rows.append(row)
    return rows


def parse_homeowners_from_page(raw_page: Any) -> List[HomeownerRow]:
    """Parse one raw leads page into homeowner rows (mobile required)."""
    props = extract_properties(raw_page)
    rows = parse_homeowners(props)
    logger.debug("Parsed %d homeowner row(s) from %d propertie(s)", len(rows), len(props))
    return rows
