"""Duration strings used for token lifetimes ("15m", "12h", "7d")."""

import re
from datetime import timedelta

from user_onboard.errors import configuration_error

_DURATION_PATTERN = re.compile(r"^(\d+)([mhd])$")

_UNITS = {
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string into a timedelta.

    Args:
        value: Digits followed by ``m`` (minutes), ``h`` (hours) or ``d`` (days)

    Returns:
        The equivalent timedelta

    Raises:
        OnboardError: CONFIGURATION if the string does not match the grammar
    """
    match = _DURATION_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise configuration_error(
            f"Invalid duration {value!r}: expected digits followed by m, h or d",
            value=value,
        )
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})
