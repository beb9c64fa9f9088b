"""Constants for the Saturn link client."""

from logging import Logger, getLogger

LOGGER: Logger = getLogger(__package__)

# Configuration keys
CONF_BIND_ADDRESS = "bind_address"
CONF_MQTT_PORT = "mqtt_port"
CONF_HTTP_PORT = "http_port"
CONF_CONNECT_TIMEOUT = "connect_timeout"
CONF_COMMAND_TIMEOUT = "command_timeout"
CONF_CHUNK_SIZE = "chunk_size"
CONF_CHUNK_TIMEOUT = "chunk_timeout"
CONF_VERIFY_TIMEOUT = "verify_timeout"
CONF_STATUS_PERIOD = "status_period"

# Defaults
DEFAULT_BIND_ADDRESS = "0.0.0.0"  # noqa: S104
DEFAULT_MQTT_PORT = 9090
DEFAULT_HTTP_PORT = 9091
DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_COMMAND_TIMEOUT = 10.0
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_CHUNK_TIMEOUT = 30.0
DEFAULT_VERIFY_TIMEOUT = 120.0
DEFAULT_STATUS_PERIOD = 5000  # ms

# Discovery
DEFAULT_BROADCAST_ADDRESS = "255.255.255.255"
DISCOVERY_MESSAGE = "M99999"
DISCOVERY_PORT = 3000
DISCOVERY_TIMEOUT = 5.0
CONNECT_MESSAGE = "M66666"

# Upload
SUPPORTED_EXTENSIONS = (".goo", ".ctb")
