"""
Model output sanitization.

WHAT: Strip markup, redact personal data and unwanted phrasing from model text
WHY: Model output is untrusted and is shown verbatim to buyers
HOW: Ordered regex passes replacing matches with [<CATEGORY>_FILTERED] markers
"""

import re

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

FILTER_MARKER = "_FILTERED]"

# Executable-looking markup
SCRIPT_PATTERN = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
IFRAME_PATTERN = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
JS_URI_PATTERN = re.compile(r"javascript:", re.IGNORECASE)
TAG_PATTERN = re.compile(r"</?[a-zA-Z][^>]*>")

# Personal data, most specific first so a card number is not read as a phone
PERSONAL_DATA_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("CREDIT_CARD", re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")),
    ("SSN", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("PHONE", re.compile(r"\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")),
    ("EMAIL", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
]

PHRASE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("PROFANITY", re.compile(r"\b(fuck\w*|shit\w*|damn|bitch\w*|crap|asshole)\b", re.IGNORECASE)),
    ("SPAM", re.compile(r"\b(click here|buy now|limited time|act now|guaranteed|free money)\b", re.IGNORECASE)),
    ("INAPPROPRIATE", re.compile(r"\b(scam|fraud|counterfeit|stolen|illegal)\b", re.IGNORECASE)),
]

# Anything outside this set is dropped after redaction. Brackets survive so
# filter markers stay intact.
DISALLOWED_CHARS = re.compile(r"[^\w\s$.,!?;:()'\-\[\]%/]")
WHITESPACE = re.compile(r"\s+")


def redact(text: str) -> str:
    """Replace personal data and unwanted phrasing with filter markers."""
    for category, pattern in PERSONAL_DATA_PATTERNS + PHRASE_PATTERNS:
        text = pattern.sub(f"[{category}{FILTER_MARKER}", text)
    return text


def sanitize_text(text: str, max_length: int | None = None) -> str:
    """
    Sanitize raw model output for display.

    Args:
        text: Raw model text
        max_length: Hard cap, defaults to settings.MAX_RESPONSE_LENGTH

    Returns:
        Cleaned text, at most max_length characters
    """
    max_length = max_length or settings.MAX_RESPONSE_LENGTH
    sanitized = str(text).strip()

    sanitized = SCRIPT_PATTERN.sub("", sanitized)
    sanitized = IFRAME_PATTERN.sub("", sanitized)
    sanitized = JS_URI_PATTERN.sub("", sanitized)
    sanitized = TAG_PATTERN.sub("", sanitized)

    redacted = redact(sanitized)
    if redacted != sanitized:
        logger.debug(f"Redacted {redacted.count(FILTER_MARKER)} span(s) from model output")
    sanitized = redacted

    sanitized = WHITESPACE.sub(" ", sanitized)
    sanitized = DISALLOWED_CHARS.sub("", sanitized).strip()

    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."

    return sanitized


def contains_personal_data(text: str) -> bool:
    """True if any personal data pattern matches."""
    return any(pattern.search(text) for _, pattern in PERSONAL_DATA_PATTERNS)
