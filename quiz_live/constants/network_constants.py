"""Network configuration constants for the live session server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
WEBSOCKET_PATH: str = "/ws"
OUTBOUND_QUEUE_SIZE: int = 256
