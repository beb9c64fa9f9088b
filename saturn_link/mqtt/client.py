"""
Saturn printer connection over SDCP/MQTT.

Legacy Saturn printers do not run a broker of their own. The client hosts
one, invites the printer to it over UDP and exchanges SDCP commands and
telemetry through it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import secrets
import socket
import time
from collections.abc import Callable
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from saturn_link.const import (
    CONF_BIND_ADDRESS,
    CONF_CHUNK_SIZE,
    CONF_COMMAND_TIMEOUT,
    CONF_CONNECT_TIMEOUT,
    CONF_HTTP_PORT,
    CONF_MQTT_PORT,
    CONF_STATUS_PERIOD,
    CONNECT_MESSAGE,
    DEFAULT_BIND_ADDRESS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HTTP_PORT,
    DEFAULT_MQTT_PORT,
    DEFAULT_STATUS_PERIOD,
    DISCOVERY_PORT,
)
from saturn_link.sdcp.const import (
    CMD_CONTINUE_PRINT,
    CMD_DISCONNECT,
    CMD_PAUSE_PRINT,
    CMD_REQUEST_ATTRIBUTES,
    CMD_REQUEST_STATUS_REFRESH,
    CMD_SET_STATUS_UPDATE_PERIOD,
    CMD_START_PRINT,
    CMD_STOP_PRINT,
    CMD_TERMINATE_FILE_TRANSFER,
    CONNECTION_ID_MIN_LENGTH,
    DEBUG,
)
from saturn_link.sdcp.exceptions import (
    CommandTimeoutError,
    NotConnectedError,
    ProtocolError,
    SaturnLinkError,
    TransportError,
)
from saturn_link.sdcp.models.enums import ConnectionState
from saturn_link.sdcp.models.printer import PrinterAttributes
from saturn_link.sdcp.models.status import PrinterStatus

from .const import (
    LOGGER,
    MQTT_TOPIC_MIN_PARTS,
    TOPIC_PREFIX,
    TOPIC_REQUEST,
)
from .file_server import SaturnFileHost
from .server import SaturnMQTTBroker

if TYPE_CHECKING:
    from saturn_link.sdcp.models.printer import PrinterIdentity
    from saturn_link.sdcp.models.status import FileTransferInfo

# The printer may not answer a disconnect before it drops the link
DISCONNECT_TIMEOUT = 2.0


def topic_parts(topic: str) -> tuple[str, str] | None:
    """
    Split an SDCP topic into (message_type, mainboard_id).

    Topics look like ``/sdcp/status/<mainboard_id>``; the leading slash is
    optional.
    """
    parts = topic.split("/")
    if parts and parts[0] == "":
        parts = parts[1:]
    if len(parts) < MQTT_TOPIC_MIN_PARTS or parts[0] != TOPIC_PREFIX:
        return None
    return parts[1], "/".join(parts[2:])


class PrinterConnection:
    """
    One live link to a Saturn printer.

    Commands are serialized: exactly one request waits for its response at a
    time. Telemetry is consumed by a single listener task and fanned out to
    registered callbacks.
    """

    def __init__(
        self,
        identity: PrinterIdentity,
        config: MappingProxyType[str, Any] = MappingProxyType({}),
        logger: Any = LOGGER,
    ) -> None:
        """
        Initialize a PrinterConnection.

        Arguments:
            identity: The printer to connect to.
            config: Ports and timeouts, keyed by the CONF_* constants.
            logger: The logger to use.

        """
        self.identity = identity
        self.address = identity.address
        self.mainboard_id: str | None = identity.mainboard_id
        self.connection_id: str | None = identity.connection_id
        self.model: str | None = identity.model
        self.config = config
        self.logger = logger
        self.state = ConnectionState.DISCONNECTED
        self.status: PrinterStatus | None = None
        self.attributes: PrinterAttributes | None = None
        self.broker: SaturnMQTTBroker | None = None
        self.file_host: SaturnFileHost | None = None
        self._listener_task: asyncio.Task | None = None
        self._subscribed = asyncio.Event()
        self._command_lock = asyncio.Lock()
        self._response_events: dict[str, asyncio.Event] = {}
        self._responses: dict[str, dict[str, Any]] = {}
        self._state_listeners: list[Callable[[ConnectionState], None]] = []
        self._status_listeners: list[Callable[[PrinterStatus], None]] = []
        self._transfer_listeners: list[Callable[[FileTransferInfo], None]] = []
        self._model_listeners: list[Callable[[str], None]] = []

    @property
    def is_connected(self) -> bool:
        """Return true if the printer is attached to our broker."""
        return self.state is ConnectionState.CONNECTED and self.broker is not None

    @property
    def request_topic(self) -> str:
        """Topic the printer listens on for commands."""
        return f"/{TOPIC_PREFIX}/{TOPIC_REQUEST}/{self.mainboard_id}"

    def add_state_listener(
        self, callback: Callable[[ConnectionState], None]
    ) -> Callable[[], None]:
        """Call callback on every state change. Returns a remover."""
        return self._add_listener(self._state_listeners, callback)

    def add_status_listener(
        self, callback: Callable[[PrinterStatus], None]
    ) -> Callable[[], None]:
        """Call callback with every status tick. Returns a remover."""
        return self._add_listener(self._status_listeners, callback)

    def subscribe_file_transfer(
        self, callback: Callable[[FileTransferInfo], None]
    ) -> Callable[[], None]:
        """Call callback with every FileTransferInfo update. Returns a remover."""
        return self._add_listener(self._transfer_listeners, callback)

    def add_model_listener(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call callback when the printer reports its machine model."""
        return self._add_listener(self._model_listeners, callback)

    @staticmethod
    def _add_listener(listeners: list, callback: Callable) -> Callable[[], None]:
        listeners.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                listeners.remove(callback)

        return remove

    async def connect(self, timeout: float | None = None) -> None:
        """
        Start the broker, invite the printer and run the handshake.

        Raises:
            TransportError: If the printer does not connect back in time.

        """
        if self.is_connected:
            self.logger.debug("Already connected")
            return
        if self.broker is not None:
            # Left over from a failed link
            await self._teardown()

        timeout = timeout or self.config.get(
            CONF_CONNECT_TIMEOUT, DEFAULT_CONNECT_TIMEOUT
        )
        self._set_state(ConnectionState.CONNECTING)
        self._subscribed.clear()
        self.logger.info("Connecting to printer %s", self.address)
        try:
            self.broker = SaturnMQTTBroker(
                host=self.config.get(CONF_BIND_ADDRESS, DEFAULT_BIND_ADDRESS),
                port=self.config.get(CONF_MQTT_PORT, DEFAULT_MQTT_PORT),
                logger=self.logger,
            )
            self.broker.on_subscribe = self._on_subscribe
            self.broker.on_disconnect = self._on_client_disconnect
            await self.broker.start()
            self._listener_task = asyncio.create_task(self._mqtt_listener())
            self._send_connect_invite(self.broker.port)
            await asyncio.wait_for(self._subscribed.wait(), timeout=timeout)
        except TimeoutError as e:
            await self._teardown()
            self._set_state(ConnectionState.FAILED)
            msg = f"Printer {self.address} did not connect within {timeout}s"
            raise TransportError(msg) from e
        except OSError as e:
            await self._teardown()
            self._set_state(ConnectionState.FAILED)
            msg = f"Failed to connect to printer {self.address}: {e}"
            raise TransportError(msg) from e

        self._set_state(ConnectionState.CONNECTED)
        try:
            await self._handshake()
        except SaturnLinkError:
            # The printer dropped before the handshake finished
            await self._teardown()
            self._set_state(ConnectionState.FAILED)
            raise
        self.logger.info(
            "Connected to printer %s (mainboard %s)", self.address, self.mainboard_id
        )

    async def disconnect(self) -> None:
        """Disconnect from the printer and release all sockets."""
        self.logger.info("Closing connection to printer %s", self.address)
        if self.is_connected:
            try:
                self.logger.debug("Sending disconnect command to printer")
                await self.send_command(CMD_DISCONNECT, timeout=DISCONNECT_TIMEOUT)
            except (TransportError, ProtocolError):
                self.logger.debug("Failed to send disconnect command")
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)

    async def ensure_file_host(self) -> SaturnFileHost:
        """Start the HTTP file host on first use."""
        if self.file_host is None:
            self.file_host = SaturnFileHost(
                host=self.config.get(CONF_BIND_ADDRESS, DEFAULT_BIND_ADDRESS),
                port=self.config.get(CONF_HTTP_PORT, DEFAULT_HTTP_PORT),
                chunk_size=self.config.get(CONF_CHUNK_SIZE, DEFAULT_CHUNK_SIZE),
                logger=self.logger,
            )
        if not self.file_host.is_running:
            try:
                await self.file_host.start()
            except OSError as e:
                msg = f"Failed to start file host: {e}"
                raise TransportError(msg) from e
        return self.file_host

    async def start_print(self, filename: str, *, start_layer: int = 0) -> None:
        """Start printing a file already on the printer."""
        data = {"Filename": filename, "StartLayer": int(start_layer)}
        await self.send_command(CMD_START_PRINT, data)

    async def print_pause(self) -> None:
        """Pause the current print."""
        await self.send_command(CMD_PAUSE_PRINT)

    async def print_stop(self) -> None:
        """Stop the current print."""
        await self.send_command(CMD_STOP_PRINT)

    async def print_resume(self) -> None:
        """Resume/continue the current print."""
        await self.send_command(CMD_CONTINUE_PRINT)

    async def terminate_transfer(self, filename: str) -> None:
        """Ask the printer to abort downloading filename."""
        await self.send_command(
            CMD_TERMINATE_FILE_TRANSFER, {"Uuid": "", "FileName": filename}
        )

    async def send_command(
        self,
        cmd: int,
        data: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Send a command and wait for the printer's response.

        Arguments:
            cmd: The command to send.
            data: The data to send with the command.
            timeout: Seconds to wait for the response.

        Returns:
            The ``Data`` object of the response.

        Raises:
            NotConnectedError: If the printer is not connected.
            CommandTimeoutError: If no response arrives in time.
            TransportError: If the link drops while waiting.
            ProtocolError: If the printer rejects the command.

        """
        if not self.is_connected or self.broker is None:
            msg = "Printer not connected, cannot send command."
            raise NotConnectedError(msg)

        timeout = timeout or self.config.get(
            CONF_COMMAND_TIMEOUT, DEFAULT_COMMAND_TIMEOUT
        )
        async with self._command_lock:
            request_id = secrets.token_hex(16)
            payload = {
                "Id": self.connection_id or self.mainboard_id,
                "Data": {
                    "Cmd": cmd,
                    "Data": data or {},
                    "From": 0,
                    "MainboardID": self.mainboard_id,
                    "RequestID": request_id,
                    "TimeStamp": int(time.time() * 1000),
                },
            }
            if DEBUG:
                msg = f"printer << \n{json.dumps(payload, indent=4)}"
                self.logger.debug(msg)

            event = asyncio.Event()
            self._response_events[request_id] = event
            try:
                delivered = await self.broker.publish(
                    self.request_topic, json.dumps(payload)
                )
                if not delivered:
                    msg = "Printer is not subscribed, cannot send command."
                    raise NotConnectedError(msg)
                await asyncio.wait_for(event.wait(), timeout=timeout)
            except TimeoutError as e:
                self.logger.debug(
                    "Timed out waiting for response to cmd %s (RequestID=%s)",
                    cmd,
                    request_id,
                )
                msg = f"No response to command {cmd} within {timeout}s"
                raise CommandTimeoutError(msg) from e
            finally:
                self._response_events.pop(request_id, None)
                response = self._responses.pop(request_id, None)

        if response is None:
            msg = f"Connection lost while waiting for command {cmd}"
            raise TransportError(msg)
        ack = response.get("Ack", 0)
        if ack:
            msg = f"Printer rejected command {cmd} (Ack={ack})"
            raise ProtocolError(msg)
        return response

    async def _handshake(self) -> None:
        """Request status and attributes, then turn on periodic status push."""
        period = self.config.get(CONF_STATUS_PERIOD, DEFAULT_STATUS_PERIOD)
        for cmd, data in (
            (CMD_REQUEST_STATUS_REFRESH, None),
            (CMD_REQUEST_ATTRIBUTES, None),
            (CMD_SET_STATUS_UPDATE_PERIOD, {"TimePeriod": period}),
        ):
            try:
                await self.send_command(cmd, data)
            except (CommandTimeoutError, ProtocolError) as e:
                self.logger.warning("Handshake command %s failed: %s", cmd, e)

    def _send_connect_invite(self, port: int) -> None:
        """
        Send UDP command to tell printer to connect to our MQTT broker.

        The printer connects back to the sender address on the given port.
        """
        message = f"{CONNECT_MESSAGE} {port}".encode()
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.sendto(message, (self.address, DISCOVERY_PORT))
        self.logger.info(
            "Sent %s to printer %s to connect to MQTT broker port %s",
            CONNECT_MESSAGE,
            self.address,
            port,
        )

    async def _teardown(self) -> None:
        if self._listener_task:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        # Unblock any waiters
        for ev in self._response_events.values():
            ev.set()

        if self.file_host:
            await self.file_host.stop()
            self.file_host = None
        if self.broker:
            self.broker.on_subscribe = None
            self.broker.on_disconnect = None
            await self.broker.stop()
            self.broker = None
        self._subscribed.clear()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.logger.debug("Connection %s: %s -> %s", self.address, self.state, state)
        self.state = state
        self._notify(self._state_listeners, state)

    def _notify(self, listeners: list[Callable[[Any], None]], value: Any) -> None:
        for callback in list(listeners):
            try:
                callback(value)
            except Exception:
                self.logger.exception("Exception in connection listener")

    def _on_subscribe(self, topic: str) -> None:
        parsed = topic_parts(topic)
        if parsed is None or parsed[0] != TOPIC_REQUEST:
            return
        mainboard_id = parsed[1]
        if self.mainboard_id and self.mainboard_id != mainboard_id:
            self.logger.warning(
                "Expected mainboard %s but %s subscribed", self.mainboard_id, mainboard_id
            )
        self.mainboard_id = mainboard_id
        self._subscribed.set()

    def _on_client_disconnect(self, client_id: str | None) -> None:
        if self.broker is None or self.broker.has_subscriber(self.request_topic):
            return
        self._subscribed.clear()
        if self.state is ConnectionState.CONNECTED:
            self.logger.warning(
                "Printer %s (client %s) dropped the connection", self.address, client_id
            )
            for ev in self._response_events.values():
                ev.set()
            self._set_state(ConnectionState.FAILED)

    async def _mqtt_listener(self) -> None:
        """Route messages the printer publishes to our broker."""
        if self.broker is None:
            return
        broker = self.broker
        try:
            while True:
                message = await broker.next_published_message()
                try:
                    self._parse_response(message.payload, message.topic)
                except Exception:
                    self.logger.exception("Error routing message on %s", message.topic)
        except asyncio.CancelledError:
            self.logger.debug("MQTT listener cancelled.")
            raise
        finally:
            self.logger.info("MQTT listener stopped.")

    def _parse_response(self, response: str, topic: str) -> None:
        """
        Parse and route an incoming JSON message from the printer.

        Arguments:
            response: The JSON message body.
            topic: The MQTT topic the message was received on.

        """
        try:
            data = json.loads(response)
        except json.JSONDecodeError:
            self.logger.warning("Invalid JSON received on %s", topic)
            return
        if not isinstance(data, dict):
            self.logger.debug("Ignoring non-object message on %s", topic)
            return

        parsed = topic_parts(topic)
        if parsed is None:
            self.logger.warning("Received message with invalid topic structure: %s", topic)
            return

        self._detect_connection_id(data)
        topic_type = parsed[0]
        match topic_type:
            case "response":
                self._response_handler(data)
            case "status":
                self._status_handler(data)
            case "attributes":
                self._attributes_handler(data)
            case "notice" | "error":
                msg = f"{topic_type} >> \n{json.dumps(data, indent=5)}"
                self.logger.debug(msg)
            case _:
                self.logger.debug("Unknown message on %s: %s", topic, data)

    def _detect_connection_id(self, data: dict[str, Any]) -> None:
        """Adopt the session uuid the printer puts in ``Id``."""
        conn_id = data.get("Id")
        if (
            isinstance(conn_id, str)
            and len(conn_id) >= CONNECTION_ID_MIN_LENGTH
            and conn_id not in (self.mainboard_id, self.connection_id)
        ):
            self.logger.info("Detected printer connection id %s", conn_id)
            self.connection_id = conn_id

    def _response_handler(self, data: dict[str, Any]) -> None:
        if DEBUG:
            msg = f"response >> \n{json.dumps(data, indent=5)}"
            self.logger.debug(msg)
        inner_data = data.get("Data")
        if not isinstance(inner_data, dict):
            return
        request_id = inner_data.get("RequestID")
        event = self._response_events.get(request_id)
        if event is None:
            self.logger.debug("No waiter found for RequestID=%s", request_id)
            return
        data_data = inner_data.get("Data")
        self._responses[request_id] = data_data if isinstance(data_data, dict) else {}
        event.set()

    def _status_handler(self, data: dict[str, Any]) -> None:
        if DEBUG:
            msg = f"status >> \n{json.dumps(data, indent=5)}"
            self.logger.debug(msg)
        status = PrinterStatus(data)
        self.status = status
        self._notify(self._status_listeners, status)
        if status.has_file_transfer_info:
            self.logger.debug("File transfer: %s", status.file_transfer_info)
            self._notify(self._transfer_listeners, status.file_transfer_info)

    def _attributes_handler(self, data: dict[str, Any]) -> None:
        if DEBUG:
            msg = f"attributes >> \n{json.dumps(data, indent=5)}"
            self.logger.debug(msg)
        attributes = PrinterAttributes(data)
        self.attributes = attributes
        if self.mainboard_id is None and attributes.mainboard_id:
            self.mainboard_id = attributes.mainboard_id
        model = attributes.machine_name
        if model and model != self.model:
            self.logger.info("Printer %s is a %s", self.address, model)
            self.model = model
            self._notify(self._model_listeners, model)
