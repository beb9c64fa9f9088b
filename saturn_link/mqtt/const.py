"""Constants for MQTT implementation."""

from logging import Logger, getLogger

LOGGER: Logger = getLogger(__package__)

# MQTT Message Types
MQTT_CONNECT = 1
MQTT_CONNACK = 2
MQTT_PUBLISH = 3
MQTT_PUBACK = 4
MQTT_SUBSCRIBE = 8
MQTT_SUBACK = 9
MQTT_PINGREQ = 12
MQTT_PINGRESP = 13
MQTT_DISCONNECT = 14

# Remaining Length is at most four bytes
MQTT_MAX_LENGTH_BYTES = 4
MQTT_PROTOCOL_NAMES = (b"MQTT", b"MQIsdp")

# MQTT Topics
# Topics follow pattern: /sdcp/{message_type}/{mainboard_id}
TOPIC_PREFIX = "sdcp"
TOPIC_REQUEST = "request"

# MQTT topic parsing
MQTT_TOPIC_MIN_PARTS = 3
