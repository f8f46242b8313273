"""
Field validators and CSV parsing for bulk member / group imports.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

PHONE_PATTERN = re.compile(r"^\+?[0-9]{8,15}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[A-Za-zÀ-ÿ\s\-']+$")
CODE_PATTERN = re.compile(r"^[A-Za-z0-9\-_]+$")
CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")

COUNTRY_CODE = "250"

VALID_FREQUENCIES = ("Weekly", "Monthly")
VALID_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass
class RowValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


def _strip_phone(phone: str) -> str:
    return re.sub(r"[\s\-()]", "", phone or "")


def validate_phone(phone: Optional[str]) -> bool:
    return bool(PHONE_PATTERN.match(_strip_phone(phone)))


def normalize_phone(phone: Optional[str]) -> str:
    """Rwandan numbers to E.164: 0788... / 788... / 250788... -> +250788..."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""
    if not digits.startswith(COUNTRY_CODE):
        if digits.startswith("0"):
            digits = COUNTRY_CODE + digits[1:]
        elif len(digits) == 9:
            digits = COUNTRY_CODE + digits
    return f"+{digits}"


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email.strip()))


def validate_name(name: Optional[str]) -> bool:
    name = (name or "").strip()
    return len(name) >= 2 and bool(NAME_PATTERN.match(name))


def validate_code(code: Optional[str]) -> bool:
    return bool(code) and bool(CODE_PATTERN.match(code.strip()))


def validate_amount(value: Any) -> bool:
    try:
        return float(value) >= 0
    except (TypeError, ValueError):
        return False


def validate_currency(currency: Optional[str]) -> bool:
    return bool(currency) and bool(CURRENCY_PATTERN.match(currency.strip()))


def _header(name: str) -> str:
    return re.sub(r"[\s\-]+", "_", name.strip().lower())


def parse_csv(text: str) -> Tuple[List[str], List[Dict[str, str]]]:
    """Parse CSV text into normalized (snake_case) headers and row dicts; blank rows are dropped."""
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return [], []
    headers = [_header(h) for h in rows[0]]
    records = []
    for row in rows[1:]:
        padded = row + [""] * (len(headers) - len(row))
        records.append({h: padded[i].strip() for i, h in enumerate(headers)})
    return headers, records


def validate_member_row(row: Dict[str, str]) -> RowValidation:
    errors: List[str] = []
    warnings: List[str] = []

    full_name = (row.get("full_name") or row.get("name") or "").strip()
    if not full_name:
        errors.append("Full name is required")
    elif not validate_name(full_name):
        errors.append(f"Invalid name: {full_name}")

    phone = row.get("phone") or row.get("phone_number") or ""
    if not phone:
        errors.append("Phone number is required")
    elif not validate_phone(phone):
        errors.append(f"Invalid phone number: {phone}")

    email = (row.get("email") or "").strip()
    if email and not validate_email(email):
        warnings.append(f"Invalid email ignored: {email}")
        email = ""

    member_code = (row.get("member_code") or "").strip()
    if member_code and not validate_code(member_code):
        errors.append(f"Invalid member code: {member_code}")

    group_code = (row.get("group_code") or row.get("group") or "").strip()
    if not group_code:
        warnings.append("No group specified; member will not be linked to a group")

    data = {
        "full_name": full_name,
        "phone": normalize_phone(phone) if phone and validate_phone(phone) else phone,
        "email": email.lower() or None,
        "member_code": member_code or None,
        "national_id": (row.get("national_id") or "").strip() or None,
        "group_code": group_code or None,
    }
    return RowValidation(valid=not errors, errors=errors, warnings=warnings, data=data)


def validate_group_row(row: Dict[str, str]) -> RowValidation:
    errors: List[str] = []
    warnings: List[str] = []

    group_name = (row.get("group_name") or row.get("name") or "").strip()
    if not group_name:
        errors.append("Group name is required")
    elif len(group_name) < 2:
        errors.append("Group name must be at least 2 characters")

    code = (row.get("code") or row.get("group_code") or "").strip()
    if code and not validate_code(code):
        errors.append(f"Invalid group code: {code}")

    expected_amount = (row.get("expected_amount") or row.get("contribution_amount") or "").strip()
    if expected_amount and not validate_amount(expected_amount):
        errors.append(f"Invalid contribution amount: {expected_amount}")

    currency = (row.get("currency") or "").strip().upper()
    if currency and not validate_currency(currency):
        errors.append(f"Invalid currency: {currency}")

    frequency = (row.get("frequency") or "").strip().capitalize()
    if frequency and frequency not in VALID_FREQUENCIES:
        warnings.append(f"Unknown frequency '{frequency}', defaulting to Weekly")
        frequency = "Weekly"

    meeting_day = (row.get("meeting_day") or "").strip().capitalize()
    if meeting_day and meeting_day not in VALID_WEEKDAYS:
        warnings.append(f"Unknown meeting day '{meeting_day}', defaulting to Monday")
        meeting_day = "Monday"

    data = {
        "group_name": group_name,
        "code": code or None,
        "expected_amount": float(expected_amount) if expected_amount and validate_amount(expected_amount) else None,
        "currency": currency or None,
        "frequency": frequency or None,
        "meeting_day": meeting_day or None,
    }
    return RowValidation(valid=not errors, errors=errors, warnings=warnings, data=data)
