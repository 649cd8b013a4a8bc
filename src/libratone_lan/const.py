import os

from pydantic import BaseModel

from libratone_lan import __version__

__all__ = [
    "ACK_PORT",
    "COMMAND_PORT",
    "DISCOVERY_GROUP",
    "DISCOVERY_PORT",
    "LIBRATONE_BIND_HOST",
    "LIBRATONE_DEBUG",
    "LIBRATONE_LOG_FORMAT",
    "LIBRATONE_LOG_HUMAN_OUTPUT",
    "LIBRATONE_LOG_JSON_FILE",
    "LIBRATONE_METRICS_PORT",
    "LIBRATONE_VERSION",
    "MAX_DATAGRAM_SIZE",
    "NOTIFY_PORT",
    "PROBE_MESSAGE",
    "REPLY_PORT",
    "ManagerConfig",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LIBRATONE_VERSION: str = __version__

# Wire protocol constants, fixed by the speaker firmware
DISCOVERY_GROUP: str = "239.255.255.250"
DISCOVERY_PORT: int = 1800
COMMAND_PORT: int = 7777
ACK_PORT: int = 3334
NOTIFY_PORT: int = 3333
REPLY_PORT: int = 7778
PROBE_MESSAGE: bytes = b"M-SEARCH * HTTP/1.1"
MAX_DATAGRAM_SIZE: int = 65536

LIBRATONE_DEBUG: bool = os.environ.get("LIBRATONE_DEBUG", "0").casefold() in YES_ANSWER
LIBRATONE_BIND_HOST: str = os.environ.get("LIBRATONE_BIND_HOST", "0.0.0.0")

_metrics_port = os.environ.get("LIBRATONE_METRICS_PORT", "0")
try:
    _metrics_port_value: int = int(_metrics_port) if _metrics_port else 0
except ValueError:
    _metrics_port_value = 0
LIBRATONE_METRICS_PORT: int = _metrics_port_value

# Logging Configuration
LIBRATONE_LOG_FORMAT: str = os.environ.get("LIBRATONE_LOG_FORMAT", "human")  # "json", "human", or "both"
_json_file = os.environ.get("LIBRATONE_LOG_JSON_FILE")
LIBRATONE_LOG_JSON_FILE: str | None = _json_file if _json_file else None
LIBRATONE_LOG_HUMAN_OUTPUT: str = os.environ.get("LIBRATONE_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path


class ManagerConfig(BaseModel):
    """Addresses and ports used by the device manager.

    Defaults match what the speakers expect; tests override the ports.
    """

    bind_host: str = LIBRATONE_BIND_HOST
    discovery_group: str = DISCOVERY_GROUP
    discovery_port: int = DISCOVERY_PORT
    notify_port: int = NOTIFY_PORT
    reply_port: int = REPLY_PORT
    command_port: int = COMMAND_PORT
    ack_port: int = ACK_PORT
