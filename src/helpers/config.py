"""Configuration management and environment variable utilities."""

from datetime import timedelta
import os

from dotenv import load_dotenv

from src.helpers.constants import (
    DEFAULT_ETH_RPC_URL,
    DEFAULT_ETH_WS_URL,
    RETENTION_HOURS,
)


# Load environment variables from .env file
load_dotenv()


def get_eth_rpc_url(rpc_url: str | None = None) -> str:
    """Get the Ethereum JSON-RPC URL used for non-streaming fetches.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        The explicit URL, else ETH_RPC_URL, else the public endpoint
    """
    if rpc_url:
        return rpc_url
    return os.getenv("ETH_RPC_URL") or DEFAULT_ETH_RPC_URL


def get_eth_ws_url(ws_url: str | None = None) -> str:
    """Get the Ethereum WebSocket URL for the newHeads subscription.

    Args:
        ws_url: Optional WebSocket URL to use directly

    Returns:
        The explicit URL, else ETH_WS_URL, else the public endpoint
    """
    if ws_url:
        return ws_url
    return os.getenv("ETH_WS_URL") or DEFAULT_ETH_WS_URL


def get_retention_window() -> timedelta:
    """Get the block retention window.

    Returns:
        RETENTION_HOURS as a timedelta (7 days when unset)

    Raises:
        ValueError: If RETENTION_HOURS is not a positive number
    """
    raw = os.getenv("RETENTION_HOURS")
    if not raw:
        return timedelta(hours=RETENTION_HOURS)

    try:
        hours = float(raw)
    except ValueError:
        msg = f"RETENTION_HOURS must be a number, got {raw!r}"
        raise ValueError(msg) from None

    if hours <= 0:
        msg = f"RETENTION_HOURS must be positive, got {raw!r}"
        raise ValueError(msg)

    return timedelta(hours=hours)


def get_log_level() -> str:
    """Get the log level name from LOG_LEVEL (default INFO)."""
    return (os.getenv("LOG_LEVEL") or "INFO").upper()


def get_log_color() -> bool:
    """Whether LOG_COLOR requests colored log output."""
    return (os.getenv("LOG_COLOR") or "").lower() in {"1", "true", "yes"}


__all__ = [
    "get_eth_rpc_url",
    "get_eth_ws_url",
    "get_log_color",
    "get_log_level",
    "get_retention_window",
]
