import re

MIN_DIGITS = 10
MAX_DIGITS = 15


class InvalidPhone(ValueError):
    def __init__(self, raw: str, digit_count: int, reason: str) -> None:
        super().__init__(f"Invalid phone number format: {raw}. {reason}")
        self.raw = raw
        self.digit_count = digit_count


def normalize_phone(raw: str, country_code: str = "91") -> str:
    """Map a user-entered phone number to the canonical digit string.

    Only a single calling-code scheme is supported: bare 10-digit numbers and
    11-digit trunk-prefixed numbers (leading ``0``) get ``country_code``.
    Anything else that already carries 10-15 digits is accepted unchanged.
    """
    cleaned = re.sub(r"\D", "", raw or "")
    prefix = re.sub(r"\D", "", country_code)

    if len(cleaned) < MIN_DIGITS:
        raise InvalidPhone(
            raw,
            len(cleaned),
            f"Phone number is too short ({len(cleaned)} digits).",
        )

    if cleaned.startswith("0") and len(cleaned) == 11:
        cleaned = prefix + cleaned[1:]
    elif len(cleaned) == 10:
        cleaned = prefix + cleaned
    elif cleaned.startswith(prefix) and len(cleaned) == len(prefix) + 10:
        pass
    elif len(cleaned) > MAX_DIGITS:
        raise InvalidPhone(
            raw,
            len(cleaned),
            f"Phone number is too long ({len(cleaned)} digits).",
        )

    if len(cleaned) < MIN_DIGITS or len(cleaned) > MAX_DIGITS:
        raise InvalidPhone(
            raw,
            len(cleaned),
            f"Expected 10-15 digits, got {len(cleaned)} after formatting.",
        )
    return cleaned
