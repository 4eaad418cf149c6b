from enum import Enum


class ConversionStatus(str, Enum):
    """Postback status codes understood by the tracker."""

    LEAD = "lead"
    REGISTRATION = "reg"
    SALE = "sale"
    DEPOSIT = "dep"
    HOLD = "hold"
    REJECT = "reject"
    TRASH = "trash"


STATUS_CODES = frozenset(s.value for s in ConversionStatus)


def is_valid_status(code: str | None) -> bool:
    return code in STATUS_CODES
