"""Unit tests for phone normalization and CSV row validation"""

from app.core.validation import (
    normalize_phone, parse_csv, validate_amount, validate_code, validate_currency, validate_email,
    validate_group_row, validate_member_row, validate_name, validate_phone,
)


def test_normalize_phone_rwandan_formats():
    assert normalize_phone("0788123456") == "+250788123456"
    assert normalize_phone("788123456") == "+250788123456"
    assert normalize_phone("250788123456") == "+250788123456"
    assert normalize_phone("+250 788 123 456") == "+250788123456"
    assert normalize_phone("") == ""
    assert normalize_phone(None) == ""


def test_field_validators():
    assert validate_phone("+250 788-123-456")
    assert not validate_phone("12345")
    assert validate_email("a@b.rw")
    assert not validate_email("not-an-email")
    assert validate_name("Mukamana Marie-Claire")
    assert not validate_name("A")
    assert not validate_name("R2D2")
    assert validate_code("GRP_01-A")
    assert not validate_code("GRP 01")
    assert validate_amount("0")
    assert not validate_amount("-5")
    assert not validate_amount("abc")
    assert validate_currency("rwf")
    assert not validate_currency("RWFX")


def test_parse_csv_normalizes_headers_and_drops_blank_rows():
    headers, rows = parse_csv("\ufeffFull Name,Phone Number,Group-Code\nAline,0788000001,G1\n,,\nEric,0788000002\n")
    assert headers == ["full_name", "phone_number", "group_code"]
    assert rows == [
        {"full_name": "Aline", "phone_number": "0788000001", "group_code": "G1"},
        {"full_name": "Eric", "phone_number": "0788000002", "group_code": ""},
    ]


def test_parse_csv_empty():
    assert parse_csv("") == ([], [])


def test_member_row_valid():
    result = validate_member_row({"full_name": "Aline Uwase", "phone": "0788000001",
                                  "email": "ALINE@example.com", "group_code": "G1"})
    assert result.valid
    assert result.data["phone"] == "+250788000001"
    assert result.data["email"] == "aline@example.com"
    assert result.warnings == []


def test_member_row_errors_and_warnings():
    result = validate_member_row({"full_name": "", "phone": "123", "email": "bad"})
    assert not result.valid
    assert "Full name is required" in result.errors
    assert "Invalid phone number: 123" in result.errors
    assert "Invalid email ignored: bad" in result.warnings
    assert "No group specified; member will not be linked to a group" in result.warnings


def test_group_row_defaults_unknown_values():
    result = validate_group_row({"group_name": "Twizigamire", "frequency": "daily", "meeting_day": "someday",
                                 "expected_amount": "5000", "currency": "rwf"})
    assert result.valid
    assert result.data["frequency"] == "Weekly"
    assert result.data["meeting_day"] == "Monday"
    assert result.data["expected_amount"] == 5000.0
    assert result.data["currency"] == "RWF"
    assert len(result.warnings) == 2


def test_group_row_invalid():
    result = validate_group_row({"group_name": "X", "code": "bad code", "expected_amount": "-1"})
    assert not result.valid
    assert len(result.errors) == 3
