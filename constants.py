import os
import json

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8887))

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = os.getenv("REDIS_PORT", 6379)
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

DOMAIN = os.getenv("DOMAIN", "localhost")

# Liveness (seconds)
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", 30))
TIMEOUT_CHECK_INTERVAL_SECONDS = float(os.getenv("TIMEOUT_CHECK_INTERVAL_SECONDS", 10))
CONNECTION_TIMEOUT_SECONDS = float(os.getenv("CONNECTION_TIMEOUT_SECONDS", 90))

# Upper bound on a single transport write
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", 5))

TIMEOUT_CLOSE_CODE = 4000
SHUTDOWN_CLOSE_CODE = 1001

# Signaling mailbox
MAILBOX_BACKEND = os.getenv("MAILBOX_BACKEND", "memory")  # memory | redis
MAILBOX_TTL_SECONDS = int(os.getenv("MAILBOX_TTL_SECONDS", 120))

GLOBAL_MEETING_ID = "global"
SERVER_SENDER = "Server"

DEFAULT_ICE_SERVERS = [{"urls": "stun:stun.l.google.com:19302"}]


def load_ice_servers(raw=None):
    """ICE server blob handed to clients verbatim. Falls back to the default on bad JSON."""
    raw = raw if raw is not None else os.getenv("ICE_SERVERS")
    if not raw:
        return DEFAULT_ICE_SERVERS
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return DEFAULT_ICE_SERVERS
    if not isinstance(value, list):
        return DEFAULT_ICE_SERVERS
    return value


ICE_SERVERS = load_ice_servers()
