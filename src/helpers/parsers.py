"""Parsing utilities for JSON-RPC quantities."""

from datetime import UTC, datetime


def parse_hex_int(hex_value: str | int | None, default: int = 0) -> int:
    """Parse a JSON-RPC quantity to integer.

    Args:
        hex_value: Hex-encoded string, an already-decoded int, or None
        default: Default value if hex_value is None

    Returns:
        int: Parsed integer value

    Example:
        >>> parse_hex_int("0xff")
        255
        >>> parse_hex_int(None, 0)
        0
    """
    if hex_value is None:
        return default
    if isinstance(hex_value, int):
        return hex_value
    return int(hex_value, 16)


def parse_unix_timestamp(timestamp: int | None) -> datetime | None:
    """Convert Unix seconds to an aware UTC datetime, keeping None.

    Example:
        >>> parse_unix_timestamp(0)
        datetime.datetime(1970, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)


def wei_to_gwei(wei: int | None) -> float | None:
    """Convert Wei to Gwei (divide by 1e9).

    Example:
        >>> wei_to_gwei(1_500_000_000)
        1.5
    """
    return float(wei) / 1e9 if wei is not None else None


__all__ = [
    "parse_hex_int",
    "parse_unix_timestamp",
    "wei_to_gwei",
]
