"""
Date derivation for identifiers that embed their creation date.

Return-note identifiers look like ``RN-DDMMYY...``: a six-digit date token
follows the first delimiter. The embedded date trails the record's real
creation date by a constant three days.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from .core.exceptions import MalformedIdentifierError


logger = logging.getLogger(__name__)


IDENTIFIER_DELIMITER = "-"
DATE_TOKEN_LENGTH = 6
BUSINESS_DAY_OFFSET = 3
CENTURY_BASE = 2000
OUTPUT_FORMAT = "%d-%m-%Y"


def normalize_identifier_date(
    identifier: str,
    offset_days: int = BUSINESS_DAY_OFFSET,
) -> str:
    """
    Derive the calendar date embedded in an identifier.

    The day offset is added before the date is constructed, counting from
    the first of the parsed month, so month and year rollover follow the
    calendar (``RN-301225XYZ`` gives ``02-01-2026``).

    Args:
        identifier: Identifier such as ``RN-010125XYZ``
        offset_days: Days added to the parsed day

    Returns:
        Date string formatted ``DD-MM-YYYY``

    Raises:
        MalformedIdentifierError: If the date token is absent or invalid
    """
    if not isinstance(identifier, str) or IDENTIFIER_DELIMITER not in identifier:
        raise MalformedIdentifierError(str(identifier), "no date delimiter")

    _, _, remainder = identifier.partition(IDENTIFIER_DELIMITER)
    token = remainder[:DATE_TOKEN_LENGTH]
    # ASCII only: str.isdigit() also accepts superscripts that int() rejects.
    if len(token) != DATE_TOKEN_LENGTH or not (token.isascii() and token.isdigit()):
        raise MalformedIdentifierError(identifier, "no DDMMYY token")

    day = int(token[0:2])
    month = int(token[2:4])
    year = CENTURY_BASE + int(token[4:6])

    if not 1 <= month <= 12:
        raise MalformedIdentifierError(identifier, f"month {month:02d} out of range")
    if not 1 <= day <= 31:
        raise MalformedIdentifierError(identifier, f"day {day:02d} out of range")

    derived = date(year, month, 1) + timedelta(days=day - 1 + offset_days)
    return derived.strftime(OUTPUT_FORMAT)


def try_normalize_identifier_date(identifier: str) -> Optional[str]:
    """Like normalize_identifier_date, but returns None for malformed identifiers."""
    try:
        return normalize_identifier_date(identifier)
    except MalformedIdentifierError as e:
        logger.warning(f"Cannot derive date from identifier: {e}")
        return None
