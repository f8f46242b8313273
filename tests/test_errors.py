"""Unit tests for error classification and user-facing messages"""

import httpx
from app.core.errors import (
    ConflictError, DatabaseError, ErrorKind, GENERIC_MESSAGE, NotFoundError, RateLimitError,
    SESSION_EXPIRED_MESSAGE, TimeoutError, UnauthorizedError, ValidationError,
    classify_error, create_api_error, create_app_error, handle_db_error, is_auth_error,
    is_network_error, is_retryable_error, is_timeout_error, user_message,
)
from tests.conftest import db_error


def test_handle_db_error_known_codes():
    assert handle_db_error({"code": "PGRST116", "message": "x"}) == "The requested record was not found."
    assert handle_db_error({"code": "23505", "message": "x"}) == "This record already exists."
    assert handle_db_error(db_error("23503")) == \
        "Cannot delete this record because it is referenced by other records."
    assert handle_db_error({"code": "42501"}) == "You do not have permission to perform this action."
    assert handle_db_error({"code": "42P01"}) == "Database table not found. Please contact support."


def test_handle_db_error_unknown_code_uses_message():
    assert handle_db_error({"code": "99999", "message": "boom"}) == "boom"


def test_handle_db_error_non_error_values():
    assert handle_db_error(None) == GENERIC_MESSAGE
    assert handle_db_error("just a string") == GENERIC_MESSAGE
    assert handle_db_error(42) == GENERIC_MESSAGE


def test_create_api_error_keeps_original():
    original = {"code": "23505", "message": "duplicate key value violates unique constraint"}
    error = create_api_error(original)
    assert error.message == "This record already exists."
    assert error.code == "23505"
    assert error.status_code == 409
    assert error.original_error is original


def test_create_app_error_from_postgrest():
    error = create_app_error(db_error("23505", "duplicate key"), "GroupService.create_group")
    assert isinstance(error, DatabaseError)
    assert error.db_code == "23505"
    assert error.status_code == 409
    assert error.raw_message == "duplicate key"


def test_create_app_error_passes_app_errors_through():
    original = NotFoundError("Member", "m-1")
    assert create_app_error(original) is original


def test_create_app_error_timeout_and_network():
    assert isinstance(create_app_error(httpx.ReadTimeout("read timed out")), TimeoutError)
    assert create_app_error(httpx.ConnectError("connection refused")).code == "NETWORK_ERROR"


def test_classifiers():
    assert is_timeout_error(TimeoutError("Query", 1000))
    assert is_timeout_error(Exception("Request timed out"))
    assert is_network_error(Exception("Failed to fetch"))
    assert not is_network_error(httpx.ReadTimeout("slow"))
    assert is_auth_error(UnauthorizedError())
    assert is_auth_error(Exception("JWT expired"))
    assert not is_auth_error(Exception("something else"))


def test_classify_error_kinds():
    assert classify_error(db_error("PGRST116")) == ErrorKind.NOT_FOUND
    assert classify_error(db_error("23505")) == ErrorKind.DUPLICATE_KEY
    assert classify_error(db_error("23503")) == ErrorKind.FOREIGN_KEY_VIOLATION
    assert classify_error(db_error("42501")) == ErrorKind.PERMISSION_DENIED
    assert classify_error(Exception("network down")) == ErrorKind.NETWORK
    assert classify_error(Exception("weird")) == ErrorKind.UNKNOWN


def test_retryable_errors():
    assert is_retryable_error(TimeoutError())
    assert is_retryable_error(RateLimitError())
    assert is_retryable_error(Exception("connection reset"))
    assert not is_retryable_error(ValidationError("bad input"))
    assert not is_retryable_error(DatabaseError("dup", db_code="23505"))


def test_user_message():
    assert user_message(None) == GENERIC_MESSAGE
    assert user_message(Exception("jwt expired")) == SESSION_EXPIRED_MESSAGE
    assert user_message(ValidationError("Amount must be greater than 0")) == "Amount must be greater than 0"
    assert user_message(ConflictError("Member already in group")) == "Member already in group"
    assert user_message(TimeoutError()) == "The request took too long. Please try again."
    assert user_message(Exception("internal stack trace")) == GENERIC_MESSAGE


def test_not_found_message():
    assert NotFoundError("Member", "m-1").message == 'Member with ID "m-1" not found'
    assert NotFoundError("Member").message == "Member not found"
