"""Fixtures simulating a Saturn printer attached to the embedded broker."""

import asyncio
import json
import struct
from collections.abc import AsyncIterator, Callable
from types import MappingProxyType
from typing import Any
from unittest.mock import Mock

import pytest

from saturn_link.const import (
    CONF_BIND_ADDRESS,
    CONF_CHUNK_SIZE,
    CONF_COMMAND_TIMEOUT,
    CONF_CONNECT_TIMEOUT,
    CONF_HTTP_PORT,
    CONF_MQTT_PORT,
)
from saturn_link.mqtt.client import PrinterConnection
from saturn_link.mqtt.const import (
    MQTT_CONNACK,
    MQTT_CONNECT,
    MQTT_PUBACK,
    MQTT_PUBLISH,
    MQTT_SUBACK,
    MQTT_SUBSCRIBE,
)
from saturn_link.mqtt.server import encode_packet, encode_publish, parse_publish
from saturn_link.sdcp.models.printer import PrinterIdentity

MAINBOARD_ID = "000000000001d354"

TEST_CONFIG = MappingProxyType(
    {
        CONF_BIND_ADDRESS: "127.0.0.1",
        CONF_MQTT_PORT: 0,
        CONF_HTTP_PORT: 0,
        CONF_CONNECT_TIMEOUT: 5.0,
        CONF_COMMAND_TIMEOUT: 1.0,
        CONF_CHUNK_SIZE: 1024,
    }
)


class SdcpPrinterSim:
    """
    A printer that speaks raw MQTT to the broker.

    It answers every command with Ack 0 unless told otherwise and records
    the command envelopes it received.
    """

    def __init__(self, mainboard_id: str = MAINBOARD_ID) -> None:
        self.mainboard_id = mainboard_id
        self.commands: list[dict[str, Any]] = []
        self.acks: dict[int, int] = {}
        self.silent: set[int] = set()
        self.on_command: Callable[[dict[str, Any]], None] | None = None
        self.drop_after_subscribe = False
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self._tasks: set[asyncio.Task] = set()

    def invite(self, port: int) -> None:
        """Stand-in for the UDP M66666 invitation."""
        self.spawn(self.attach(port))

    def spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cmds(self) -> list[int]:
        return [c["Data"]["Cmd"] for c in self.commands]

    async def attach(self, port: int) -> None:
        self.reader, self.writer = await asyncio.open_connection("127.0.0.1", port)
        client_id = b"saturn"
        await self._send(
            MQTT_CONNECT,
            struct.pack("!H", 4)
            + b"MQTT"
            + bytes([4, 2, 0, 60])
            + struct.pack("!H", len(client_id))
            + client_id,
        )
        assert (await self._read())[0] == MQTT_CONNACK
        topic = f"/sdcp/request/{self.mainboard_id}".encode()
        await self._send(
            MQTT_SUBSCRIBE,
            struct.pack("!HH", 1, len(topic)) + topic + b"\x01",
            flags=2,
        )
        assert (await self._read())[0] == MQTT_SUBACK
        if self.drop_after_subscribe:
            self.writer.close()
            self.writer = None
            return
        self.spawn(self._loop())

    async def publish(self, topic_type: str, payload: dict[str, Any]) -> None:
        topic = f"/sdcp/{topic_type}/{self.mainboard_id}"
        await self._send(MQTT_PUBLISH, encode_publish(topic, json.dumps(payload)))

    async def status(self, status: dict[str, Any], conn_id: str | None = None) -> None:
        await self.publish(
            "status",
            {
                "Id": conn_id or self.mainboard_id,
                "Data": {"Status": status, "MainboardID": self.mainboard_id},
            },
        )

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self.writer is not None:
            self.writer.close()
            self.writer = None

    async def _loop(self) -> None:
        try:
            while True:
                msg_type, flags, body = await self._read()
                if msg_type != MQTT_PUBLISH:
                    continue
                qos = (flags >> 1) & 0x3
                _, packid, content = parse_publish(body, qos)
                if qos:
                    await self._send(MQTT_PUBACK, struct.pack("!H", packid))
                await self._handle(json.loads(content))
        except (asyncio.IncompleteReadError, ConnectionError):
            return

    async def _handle(self, request: dict[str, Any]) -> None:
        self.commands.append(request)
        data = request["Data"]
        cmd = data["Cmd"]
        if cmd not in self.silent:
            await self.publish(
                "response",
                {
                    "Id": request["Id"],
                    "Data": {
                        "Cmd": cmd,
                        "Data": {"Ack": self.acks.get(cmd, 0)},
                        "RequestID": data["RequestID"],
                        "MainboardID": self.mainboard_id,
                    },
                },
            )
        if self.on_command is not None:
            self.on_command(request)

    async def _send(self, msg_type: int, body: bytes, flags: int = 0) -> None:
        assert self.writer is not None
        self.writer.write(encode_packet(msg_type, flags=flags, payload=body))
        await self.writer.drain()

    async def _read(self) -> tuple[int, int, bytes]:
        assert self.reader is not None
        header = (await self.reader.readexactly(1))[0]
        length = 0
        multiplier = 1
        while True:
            byte = (await self.reader.readexactly(1))[0]
            length += (byte & 0x7F) * multiplier
            if byte & 0x80 == 0:
                break
            multiplier *= 128
        return header >> 4, header & 0xF, await self.reader.readexactly(length)


@pytest.fixture
async def printer_sim() -> AsyncIterator[SdcpPrinterSim]:
    """Create a simulated printer."""
    sim = SdcpPrinterSim()
    yield sim
    await sim.close()


@pytest.fixture
def new_connection(
    printer_sim: SdcpPrinterSim,
) -> Callable[..., PrinterConnection]:
    """Build connections whose UDP invite attaches the simulated printer."""

    def factory(config: MappingProxyType[str, Any] = TEST_CONFIG) -> PrinterConnection:
        connection = PrinterConnection(
            PrinterIdentity.from_address("127.0.0.1"), config, logger=Mock()
        )
        connection._send_connect_invite = printer_sim.invite  # type: ignore[method-assign]  # noqa: SLF001
        return connection

    return factory


@pytest.fixture
async def connection(
    new_connection: Callable[..., PrinterConnection],
) -> AsyncIterator[PrinterConnection]:
    """Create a connected PrinterConnection."""
    connection = new_connection()
    await connection.connect()
    yield connection
    await connection.disconnect()
