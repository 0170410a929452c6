"""
Unit tests for model output sanitization.

WHAT: Test markup stripping, redaction markers, whitespace and length capping
WHY: Model text is shown to buyers verbatim after this pass
HOW: Feed hostile and personal strings through sanitize_text
"""

import re

import pytest

from negotiator.utils.sanitize import contains_personal_data, redact, sanitize_text


@pytest.mark.unit
def test_phone_number_is_redacted():
    result = sanitize_text("Sure, call me at 555-123-4567 to arrange pickup.")

    assert "[PHONE_FILTERED]" in result
    assert not re.search(r"\d{3}-\d{3}-\d{4}", result)


@pytest.mark.unit
@pytest.mark.parametrize("number", ["555 123 4567", "(555) 123 4567", "555.123 4567", "5551234567"])
def test_phone_number_separator_variants_are_redacted(number):
    result = sanitize_text(f"Call me at {number} tonight.")

    assert "[PHONE_FILTERED]" in result
    assert "4567" not in result


@pytest.mark.unit
def test_email_is_redacted():
    result = sanitize_text("Email me at seller@example.com")
    assert "[EMAIL_FILTERED]" in result
    assert "example.com" not in result


@pytest.mark.unit
def test_card_and_ssn_are_redacted():
    result = redact("card 4111 1111 1111 1111 and ssn 123-45-6789")
    assert "[CREDIT_CARD_FILTERED]" in result
    assert "[SSN_FILTERED]" in result
    assert "4111" not in result


@pytest.mark.unit
def test_profanity_and_spam_are_redacted():
    result = sanitize_text("Damn, act now before it's gone!")
    assert "[PROFANITY_FILTERED]" in result
    assert "[SPAM_FILTERED]" in result


@pytest.mark.unit
def test_markup_is_stripped():
    result = sanitize_text('<script>alert("x")</script><b>Great</b> laptop <a href="javascript:void(0)">here</a>')
    assert "alert" not in result
    assert "<" not in result and ">" not in result
    assert "javascript" not in result.lower()
    assert result.startswith("Great laptop")


@pytest.mark.unit
def test_whitespace_is_collapsed():
    assert sanitize_text("  How   about\n\n$2,150?  ") == "How about $2,150?"


@pytest.mark.unit
def test_disallowed_characters_are_dropped():
    assert sanitize_text("Price: $100 ✨") == "Price: $100"


@pytest.mark.unit
def test_length_is_capped_with_ellipsis():
    result = sanitize_text("a" * 600, max_length=500)
    assert len(result) == 500
    assert result.endswith("...")


@pytest.mark.unit
def test_short_text_is_untouched():
    assert sanitize_text("How about $2,150?") == "How about $2,150?"


@pytest.mark.unit
def test_contains_personal_data():
    assert contains_personal_data("reach me at 555.123.4567")
    assert not contains_personal_data("How about $2,150?")
