"""Card number masking.

Only the trailing four digits of a card number are ever retained or logged.
"""

_ASCII_DIGITS = frozenset("0123456789")


def extract_last_four(card_number: str | None) -> str:
    """Return the last four characters of `card_number` when they are digits.

    Returns an empty string for `None`, blank input, input shorter than four
    characters, or a tail that is not all ASCII digits. This is string slicing,
    so leading zeros survive ("0042" stays "0042").
    """

    if card_number is None or not card_number.strip() or len(card_number) < 4:
        return ""
    last_four = card_number[-4:]
    return last_four if all(ch in _ASCII_DIGITS for ch in last_four) else ""
