"""Common configuration constants used across the application."""

# HTTP and Network Constants
DEFAULT_TIMEOUT = 30.0
"""Default HTTP request timeout in seconds"""

CONNECTION_TIMEOUT = 10.0
"""Timeout for establishing database connections"""

WS_PING_INTERVAL = 20.0
"""Seconds between WebSocket keepalive pings"""

WS_PING_TIMEOUT = 10.0
"""Seconds to wait for a WebSocket pong before closing"""

DEFAULT_ETH_WS_URL = "wss://ethereum-rpc.publicnode.com"
"""Public newHeads feed used when ETH_WS_URL is not set"""

DEFAULT_ETH_RPC_URL = "https://ethereum-rpc.publicnode.com"
"""Public JSON-RPC endpoint used when ETH_RPC_URL is not set"""

# Retry Configuration (database layer)
DB_MAX_RETRIES = 3
"""Maximum number of attempts for a store operation"""

DB_RETRY_BASE_DELAY = 1.0
"""Base delay for exponential backoff in seconds"""

DB_RETRY_MAX_DELAY = 10.0
"""Maximum delay between store retries in seconds"""

# Connection pool
DB_POOL_SIZE = 10
"""Persistent connections kept by the store engine"""

DB_MAX_OVERFLOW = 15
"""Extra connections allowed above the pool size"""

DB_POOL_RECYCLE = 1800
"""Seconds after which pooled connections are recycled"""

# Backfill
BACKFILL_CHUNK_SIZE = 50
"""Block numbers fetched concurrently per backfill chunk"""

BACKFILL_CHUNK_DELAY = 0.1
"""Seconds to wait between backfill chunks"""

RECENT_BLOCKS_WINDOW = 110
"""Number of most recent blocks backfilled on every (re)connect"""

# Live subscription
RECONNECT_DELAY = 5.0
"""Fixed delay in seconds before reconnecting the newHeads subscription"""

GAP_CHECK_INTERVAL = 300.0
"""Seconds between periodic full-store gap sweeps"""

# Liveness
LIVENESS_CHECK_INTERVAL = 60.0
"""Seconds between heartbeat checks"""

LIVENESS_THRESHOLD = 300.0
"""Seconds without a processed block before the process is considered stalled"""

# Retention
RETENTION_HOURS = 168
"""Default retention window in hours (7 days)"""

RETENTION_INTERVAL = 3600.0
"""Seconds between retention sweeps"""


__all__ = [
    "BACKFILL_CHUNK_DELAY",
    "BACKFILL_CHUNK_SIZE",
    "CONNECTION_TIMEOUT",
    "DB_MAX_OVERFLOW",
    "DB_MAX_RETRIES",
    "DB_POOL_RECYCLE",
    "DB_POOL_SIZE",
    "DB_RETRY_BASE_DELAY",
    "DB_RETRY_MAX_DELAY",
    "DEFAULT_ETH_RPC_URL",
    "DEFAULT_ETH_WS_URL",
    "DEFAULT_TIMEOUT",
    "GAP_CHECK_INTERVAL",
    "LIVENESS_CHECK_INTERVAL",
    "LIVENESS_THRESHOLD",
    "RECENT_BLOCKS_WINDOW",
    "RECONNECT_DELAY",
    "RETENTION_HOURS",
    "RETENTION_INTERVAL",
    "WS_PING_INTERVAL",
    "WS_PING_TIMEOUT",
]
