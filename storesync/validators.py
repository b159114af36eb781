"""
Input validation functions for table and chart queries.

All validators raise ValidationError on invalid input.
"""

import re
from datetime import date, datetime
from typing import Optional, Tuple, Union

from storesync.exceptions import ValidationError


# Maximum allowed values
MAX_PAGE_SIZE = 500
MAX_PARTITION_KEY_LENGTH = 64

VALID_SORT_ORDERS = {"asc", "desc"}


def validate_date_string(
    value: str,
    field: str = "date",
    format: str = "%Y-%m-%d"
) -> date:
    """
    Validate and parse a date string.

    Args:
        value: Date string to validate
        field: Field name for error messages
        format: Expected date format (default: YYYY-MM-DD)

    Returns:
        Parsed date object

    Raises:
        ValidationError: If date is invalid or in wrong format
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    try:
        return datetime.strptime(value, format).date()
    except ValueError:
        raise ValidationError(
            field,
            f"Invalid date format. Expected {format}",
            value
        )


def validate_date_range(
    start: Union[date, str],
    end: Union[date, str],
    max_days: Optional[int] = None
) -> Tuple[date, date]:
    """
    Normalize a chart or table date range.

    Either end may be a date or a YYYY-MM-DD string. The span is counted
    inclusively, the way charts count days.

    Args:
        start: First day of the range
        end: Last day of the range
        max_days: Maximum allowed span in days (None = no limit)

    Returns:
        Tuple of (start, end) as date objects

    Raises:
        ValidationError: If a date is invalid, the range is reversed or too long
    """
    start_day = _as_date(start, "start_date")
    end_day = _as_date(end, "end_date")

    if start_day > end_day:
        raise ValidationError(
            "date_range",
            "Start date must be before or equal to end date",
            f"{start_day} to {end_day}"
        )

    span = (end_day - start_day).days + 1
    if max_days is not None and span > max_days:
        raise ValidationError(
            "date_range",
            f"Date range cannot exceed {max_days} days",
            f"{span} days"
        )

    return start_day, end_day


def _as_date(value: Union[date, str], field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return validate_date_string(value, field)


def validate_page(value: int, field: str = "page") -> int:
    """
    Validate a 1-based page number.

    Raises:
        ValidationError: If page is not a positive integer
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if value < 1:
        raise ValidationError(field, "Must be at least 1", value)

    return value


def validate_page_size(
    value: int,
    field: str = "page_size",
    max_value: int = MAX_PAGE_SIZE
) -> int:
    """
    Validate a page size.

    Args:
        value: Page size to validate
        field: Field name for error messages
        max_value: Maximum allowed value

    Returns:
        Validated page size

    Raises:
        ValidationError: If page size is out of range
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if value < 1:
        raise ValidationError(field, "Must be at least 1", value)

    if value > max_value:
        raise ValidationError(
            field,
            f"Cannot exceed {max_value}",
            value
        )

    return value


def validate_sort_order(
    value: Optional[str],
    field: str = "sort_order",
    allow_none: bool = True
) -> Optional[str]:
    """
    Validate a sort direction.

    Returns:
        "asc", "desc" or None
    """
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(field, "Sort order is required")

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    value = value.lower().strip()

    if value not in VALID_SORT_ORDERS:
        raise ValidationError(
            field,
            f"Must be one of: {', '.join(sorted(VALID_SORT_ORDERS))}",
            value
        )

    return value


def validate_partition_key(
    value: Optional[str],
    field: str = "store_id",
) -> str:
    """
    Validate a store identifier used as a channel partition key.

    Args:
        value: Store identifier
        field: Field name for error messages

    Returns:
        Stripped store identifier

    Raises:
        ValidationError: If the key is empty, too long or has invalid characters
    """
    if value is None or not isinstance(value, str):
        raise ValidationError(field, "Store identifier is required", value)

    value = value.strip()

    if not value:
        raise ValidationError(field, "Store identifier is required")

    if len(value) > MAX_PARTITION_KEY_LENGTH:
        raise ValidationError(
            field,
            f"Cannot exceed {MAX_PARTITION_KEY_LENGTH} characters",
            f"{len(value)} characters"
        )

    if not re.match(r"^[\w\-\.]+$", value):
        raise ValidationError(
            field,
            "Contains invalid characters",
            value
        )

    return value
