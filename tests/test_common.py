import json
import logging

from paygate_common.logging_config import JSONFormatter
from paygate_common.security_config import sanitize_input, validate_password_strength
from paygate_common.utils import Settings, create_access_token, verify_token

import pytest
from fastapi import HTTPException


def test_json_formatter_includes_payment_fields():
    record = logging.LogRecord("paygate", logging.INFO, __file__, 10, "Payment created", None, None)
    record.order_id = "ORDER-1"
    record.payment_type = "qris"

    line = json.loads(JSONFormatter("paygate").format(record))

    assert line["service"] == "paygate"
    assert line["message"] == "Payment created"
    assert line["order_id"] == "ORDER-1"
    assert line["payment_type"] == "qris"
    assert "exception" not in line


def test_sanitize_input():
    assert sanitize_input("  <b>Tea</b> ") == "&lt;b&gt;Tea&lt;/b&gt;"
    assert sanitize_input(None) is None


def test_password_strength():
    assert validate_password_strength("Password123")
    assert not validate_password_strength("password123")
    assert not validate_password_strength("Pass1")


def test_token_round_trip_uses_given_settings():
    config = Settings(SECRET_KEY="one")
    token = create_access_token({"sub": "user-1"}, config=config)

    payload = verify_token(token, config)
    assert payload["sub"] == "user-1"
    assert payload["jti"]

    with pytest.raises(HTTPException) as exc_info:
        verify_token(token, Settings(SECRET_KEY="two"))
    assert exc_info.value.status_code == 401
