"""
Unit tests for payload sanitization.
"""

from spectraview.sanitize import sanitize, sanitize_string


def test_patterns_replaced():
    assert sanitize_string("card 4111 1111 1111 1111 ok") == "card [CARD] ok"
    assert sanitize_string("ssn 123-45-6789") == "ssn [SSN]"
    assert sanitize_string("mail jane.doe@example.com now") == "mail [EMAIL] now"
    assert sanitize_string("call 555-123-4567") == "call [PHONE]"


def test_nested_structures_are_walked():
    data = {
        "user": {"email": "a@b.io", "tags": ["x", "555.123.4567"]},
        "count": 3,
        "flag": True,
    }
    out = sanitize(data)
    assert out == {
        "user": {"email": "[EMAIL]", "tags": ["x", "[PHONE]"]},
        "count": 3,
        "flag": True,
    }


def test_input_not_mutated():
    data = {"email": "a@b.io"}
    sanitize(data)
    assert data == {"email": "a@b.io"}


def test_falsy_values_pass_through():
    assert sanitize(None) is None
    assert sanitize({}) == {}
    assert sanitize(0) == 0
