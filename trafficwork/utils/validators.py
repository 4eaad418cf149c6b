import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")


def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def is_valid_email(val: str | None) -> bool:
    return bool(val and _EMAIL_RE.match(val))


def normalize_currency(val: str | None, default: str = "USD") -> str:
    if val and _CURRENCY_RE.match(val.strip()):
        return val.strip().upper()
    return default


def clean_click_id(val: str | None) -> str | None:
    """Click ids are opaque tracker tokens; only trim and bound them."""
    return clean_str(val, max_len=128)
