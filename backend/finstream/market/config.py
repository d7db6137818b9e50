"""Fixed configuration for the market-data client."""

# Broadcasting Service STOMP endpoint (raw WebSocket leg of the SockJS endpoint)
DEFAULT_WS_URL = "ws://localhost:8082/stock-updates/websocket"

# Broker destinations
PRICE_TOPIC = "/topic/stocks/prices"
NOTIFICATION_TOPIC = "/topic/system/notifications"

# Reconnection policy: delay = RECONNECT_BASE_DELAY * RECONNECT_BACKOFF ** attempts
RECONNECT_BASE_DELAY = 5.0  # seconds
RECONNECT_BACKOFF = 1.5
MAX_RECONNECT_ATTEMPTS = 10
MANUAL_RECONNECT_DELAY = 1.0  # seconds

# STOMP heart-beat, both directions (matches the server's 25s setting)
HEARTBEAT_INTERVAL = 25.0  # seconds

# Ring buffer caps and view limits
NOTIFICATION_BUFFER_SIZE = 50
ERROR_BUFFER_SIZE = 20
RECENT_ERRORS_LIMIT = 5
NOTIFICATION_WINDOW = 300.0  # seconds a notification stays "active"

# Sliding window for the updates/sec estimate
THROUGHPUT_WINDOW = 10.0  # seconds

PERFORMANCE_LOG_INTERVAL = 60.0  # seconds

DEFAULT_SELECTED_SYMBOLS: frozenset[str] = frozenset({"AAPL", "GOOGL", "MSFT", "TSLA", "NVDA"})
