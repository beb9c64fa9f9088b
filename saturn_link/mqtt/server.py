"""
Embedded MQTT broker for legacy Saturn printers.

Saturn printers are MQTT clients: the host invites them with ``M66666`` and
they connect back to this broker. Only the subset of MQTT 3.1/3.1.1 the
printers use is implemented.

Based on SimpleMQTTServer from Cassini (MIT License).
Copyright (C) 2023 Vladimir Vukicevic
"""

from __future__ import annotations

import asyncio
import struct
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from saturn_link.const import DEFAULT_BIND_ADDRESS, DEFAULT_MQTT_PORT
from saturn_link.sdcp.exceptions import ProtocolError

from .const import (
    LOGGER,
    MQTT_CONNACK,
    MQTT_CONNECT,
    MQTT_DISCONNECT,
    MQTT_MAX_LENGTH_BYTES,
    MQTT_PINGREQ,
    MQTT_PINGRESP,
    MQTT_PROTOCOL_NAMES,
    MQTT_PUBACK,
    MQTT_PUBLISH,
    MQTT_SUBACK,
    MQTT_SUBSCRIBE,
)


@dataclass(frozen=True)
class MqttMessage:
    """A PUBLISH received from a client."""

    topic: str
    payload: str


def encode_length(length: int) -> bytes:
    """
    Encode message length as an MQTT variable byte integer.

    Args:
        length: Length to encode

    Returns:
        Encoded length bytes

    """
    encoded = bytearray()
    while True:
        digit = length % 128
        length //= 128
        if length > 0:
            digit |= 0x80
        encoded.append(digit)
        if length == 0:
            break
    return bytes(encoded)


def decode_length(data: bytes) -> tuple[int, int] | None:
    """
    Decode an MQTT variable byte integer.

    Args:
        data: Bytes starting with the encoded length

    Returns:
        Tuple of (decoded_length, bytes_consumed), or None if data ends
        before the length is complete.

    Raises:
        ProtocolError: If the length runs past four bytes.

    """
    multiplier = 1
    value = 0
    for index, byte in enumerate(data):
        if index >= MQTT_MAX_LENGTH_BYTES:
            break
        value += (byte & 0x7F) * multiplier
        if byte & 0x80 == 0:
            return value, index + 1
        multiplier *= 128
    else:
        return None
    msg = "Malformed MQTT Remaining Length"
    raise ProtocolError(msg)


def encode_packet(
    msg_type: int, flags: int = 0, packet_ident: int = 0, payload: bytes = b""
) -> bytes:
    """Frame a packet: fixed header, optional packet identifier, payload."""
    body = payload
    if packet_ident > 0:
        body = struct.pack("!H", packet_ident) + payload
    return bytes([msg_type << 4 | flags]) + encode_length(len(body)) + body


def split_packets(data: bytes) -> tuple[list[tuple[int, int, bytes]], bytes]:
    """
    Cut complete packets off the front of a receive buffer.

    Returns:
        Tuple of ([(msg_type, flags, body), ...], unconsumed bytes)

    """
    packets: list[tuple[int, int, bytes]] = []
    while len(data) >= 2:  # noqa: PLR2004
        decoded = decode_length(data[1:])
        if decoded is None:
            break
        msg_length, len_bytes_consumed = decoded
        head_len = len_bytes_consumed + 1
        if msg_length + head_len > len(data):
            break
        packets.append(
            (data[0] >> 4, data[0] & 0xF, data[head_len : head_len + msg_length])
        )
        data = data[head_len + msg_length :]
    return packets, data


def parse_connect(message: bytes) -> str:
    """
    Parse MQTT CONNECT message.

    Returns:
        The client identifier

    Raises:
        ProtocolError: If the protocol name or layout is wrong.

    """
    try:
        name_len = struct.unpack("!H", message[0:2])[0]
        name = message[2 : 2 + name_len]
        if name not in MQTT_PROTOCOL_NAMES:
            msg = f"Unsupported MQTT protocol name {name!r}"
            raise ProtocolError(msg)
        # protocol level, connect flags, keepalive
        offset = 2 + name_len + 4
        client_id_len = struct.unpack("!H", message[offset : offset + 2])[0]
        return message[offset + 2 : offset + 2 + client_id_len].decode("utf-8")
    except (struct.error, UnicodeDecodeError) as e:
        msg = "Malformed MQTT CONNECT"
        raise ProtocolError(msg) from e


def parse_publish(message: bytes, qos: int = 0) -> tuple[str, int, str]:
    """
    Parse MQTT PUBLISH message.

    Args:
        message: Message data
        qos: Quality of Service level (0, 1, or 2)

    Returns:
        Tuple of (topic, packet_id, message_content)

    """
    try:
        topic_len = struct.unpack("!H", message[0:2])[0]
        topic = message[2 : 2 + topic_len].decode("utf-8")
        # QoS 0 messages don't have a packet ID
        if qos == 0:
            return topic, 0, message[2 + topic_len :].decode("utf-8", "replace")
        packid = struct.unpack("!H", message[2 + topic_len : 4 + topic_len])[0]
    except (struct.error, UnicodeDecodeError) as e:
        msg = "Malformed MQTT PUBLISH"
        raise ProtocolError(msg) from e
    return topic, packid, message[4 + topic_len :].decode("utf-8", "replace")


def parse_subscribe(message: bytes) -> tuple[int, list[tuple[str, int]]]:
    """
    Parse MQTT SUBSCRIBE message.

    Returns:
        Tuple of (packet_id, [(topic, requested_qos), ...])

    """
    try:
        packid = struct.unpack("!H", message[0:2])[0]
        topics: list[tuple[str, int]] = []
        offset = 2
        while offset < len(message):
            topic_len = struct.unpack("!H", message[offset : offset + 2])[0]
            topic = message[offset + 2 : offset + 2 + topic_len].decode("utf-8")
            qos = message[offset + 2 + topic_len] & 0x3
            topics.append((topic, qos))
            offset += 3 + topic_len
    except (struct.error, IndexError, UnicodeDecodeError) as e:
        msg = "Malformed MQTT SUBSCRIBE"
        raise ProtocolError(msg) from e
    if not topics:
        msg = "MQTT SUBSCRIBE without topics"
        raise ProtocolError(msg)
    return packid, topics


def encode_publish(topic: str, message: str, packid: int = 0) -> bytes:
    """
    Encode the variable header and payload of a PUBLISH.

    Args:
        topic: Topic name
        message: Message content
        packid: Packet identifier (0 for QoS 0)

    Returns:
        Encoded PUBLISH message bytes

    """
    topic_bytes = topic.encode("utf-8")
    head = struct.pack("!H", len(topic_bytes)) + topic_bytes
    if packid:
        head += struct.pack("!H", packid)
    return head + message.encode("utf-8")


class SaturnMQTTBroker:
    """
    Minimal embedded MQTT broker the printer connects to.

    Messages published by clients are queued on ``incoming_messages``;
    ``publish`` delivers to every client subscribed to the exact topic.
    """

    def __init__(
        self,
        host: str = DEFAULT_BIND_ADDRESS,
        port: int = DEFAULT_MQTT_PORT,
        logger: Any = LOGGER,
    ) -> None:
        """
        Initialize the MQTT broker.

        Args:
            host: Host address to bind to
            port: Preferred port; a random port is used if it is taken

        """
        self.host = host
        self.port = port
        self.logger = logger
        self.server: asyncio.Server | None = None
        self.incoming_messages: asyncio.Queue[MqttMessage] = asyncio.Queue()
        self.connected_clients: dict[str, Any] = {}
        # {topic: {writer: qos}}
        self.subscriptions: dict[str, dict[asyncio.StreamWriter, int]] = {}
        self.on_subscribe: Callable[[str], None] | None = None
        self.on_disconnect: Callable[[str | None], None] | None = None
        self.next_pack_id_value = 1
        self._writers: set[asyncio.StreamWriter] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Return True while the broker accepts connections."""
        return self._running and self.server is not None

    async def start(self) -> None:
        """Start the MQTT broker server."""
        try:
            self.server = await asyncio.start_server(
                self.handle_client, self.host, self.port
            )
        except OSError:
            if self.port == 0:
                self.logger.exception("Failed to start MQTT broker")
                raise
            self.logger.warning("MQTT port %s is busy. Using a random port.", self.port)
            self.server = await asyncio.start_server(self.handle_client, self.host, 0)
        self.port = self.server.sockets[0].getsockname()[1]
        self._running = True
        self.logger.info(
            "MQTT Broker listening on %s", self.server.sockets[0].getsockname()
        )

    async def stop(self) -> None:
        """Stop the broker and drop all clients."""
        self._running = False
        for writer in list(self._writers):
            writer.close()
        if self.server:
            self.server.close()
            try:
                await asyncio.wait_for(self.server.wait_closed(), timeout=5.0)
                self.logger.info("MQTT Broker stopped")
            except TimeoutError:
                self.logger.warning("MQTT Broker stop timed out, forcing shutdown")
            finally:
                self.server = None

    def has_subscriber(self, topic: str) -> bool:
        """Return True if any client is subscribed to topic."""
        return bool(self.subscriptions.get(topic))

    async def publish(self, topic: str, payload: str) -> int:
        """
        Send a QoS 1 PUBLISH to every client subscribed to topic.

        Returns:
            The number of clients the message was written to.

        """
        delivered = 0
        for writer in list(self.subscriptions.get(topic, {})):
            packet = encode_packet(
                MQTT_PUBLISH,
                flags=0x2,
                payload=encode_publish(topic, payload, self._next_pack_id()),
            )
            try:
                writer.write(packet)
                await writer.drain()
            except (ConnectionError, OSError) as e:
                self.logger.debug("Failed to publish to client: %s", e)
                continue
            delivered += 1
        return delivered

    async def next_published_message(self) -> MqttMessage:
        """Wait for and return the next message published by a client."""
        return await self.incoming_messages.get()

    async def handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a connected MQTT client until it disconnects."""
        addr = writer.get_extra_info("peername")
        self.logger.debug("MQTT client connected from %s", addr)
        self._writers.add(writer)
        client_id: str | None = None
        try:
            client_id = await self._handle_client_inner(reader, writer, addr)
        except ProtocolError as e:
            self.logger.error("MQTT client %s: %s", addr, e)  # noqa: TRY400
        except (ConnectionError, OSError) as e:
            self.logger.debug("MQTT client %s connection lost: %s", addr, e)
        except Exception:
            self.logger.exception("Exception handling MQTT client")
        finally:
            self._writers.discard(writer)
            self._drop_client(writer, client_id)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self.logger.info("MQTT client %s disconnected", addr)
            if self.on_disconnect is not None:
                self.on_disconnect(client_id)

    async def _handle_client_inner(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        addr: Any,
    ) -> str | None:
        client_id: str | None = None
        data = b""
        while self._running:
            chunk = await reader.read(1024)
            if not chunk:  # Connection closed
                return client_id
            data += chunk
            packets, data = split_packets(data)

            for msg_type, msg_flags, message in packets:
                if msg_type == MQTT_CONNECT:
                    client_id = parse_connect(message)
                    self.logger.info("MQTT client %s at %s connected", client_id, addr)
                    self.connected_clients[client_id] = addr
                    await self._send_msg(writer, MQTT_CONNACK, payload=b"\x00\x00")

                elif msg_type == MQTT_PUBLISH:
                    qos = (msg_flags >> 1) & 0x3
                    topic, packid, content = parse_publish(message, qos)
                    self.logger.debug("MQTT received message on topic: %s", topic)
                    self.incoming_messages.put_nowait(MqttMessage(topic, content))
                    if qos > 0:
                        # Unacknowledged QoS 1 messages stall the printer
                        await self._send_msg(writer, MQTT_PUBACK, packet_ident=packid)

                elif msg_type == MQTT_SUBSCRIBE:
                    packid, topics = parse_subscribe(message)
                    for topic, qos in topics:
                        self.logger.info(
                            "MQTT client %s subscribed to '%s' (QoS %s)", addr, topic, qos
                        )
                        self.subscriptions.setdefault(topic, {})[writer] = qos
                    await self._send_msg(
                        writer,
                        MQTT_SUBACK,
                        packet_ident=packid,
                        payload=bytes(min(qos, 1) for _, qos in topics),
                    )
                    if self.on_subscribe is not None:
                        for topic, _ in topics:
                            self.on_subscribe(topic)

                elif msg_type == MQTT_PINGREQ:
                    await self._send_msg(writer, MQTT_PINGRESP)

                elif msg_type == MQTT_DISCONNECT:
                    return client_id

                elif msg_type != MQTT_PUBACK:
                    self.logger.debug("Ignoring MQTT packet type %s", msg_type)
        return client_id

    def _drop_client(self, writer: asyncio.StreamWriter, client_id: str | None) -> None:
        if client_id is not None:
            self.connected_clients.pop(client_id, None)
        for topic in list(self.subscriptions):
            self.subscriptions[topic].pop(writer, None)
            if not self.subscriptions[topic]:
                del self.subscriptions[topic]

    async def _send_msg(
        self,
        writer: asyncio.StreamWriter,
        msg_type: int,
        flags: int = 0,
        packet_ident: int = 0,
        payload: bytes = b"",
    ) -> None:
        writer.write(encode_packet(msg_type, flags, packet_ident, payload))
        await writer.drain()

    def _next_pack_id(self) -> int:
        pack_id = self.next_pack_id_value
        self.next_pack_id_value = pack_id % 0xFFFF + 1
        return pack_id
