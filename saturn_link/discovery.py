"""
UDP discovery of Saturn printers on the local network.

A ``M99999`` datagram is broadcast to the SDCP discovery port and every
printer answers with a JSON description of itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from .const import (
    DEFAULT_BROADCAST_ADDRESS,
    DISCOVERY_MESSAGE,
    DISCOVERY_PORT,
    DISCOVERY_TIMEOUT,
    LOGGER,
)
from .sdcp.exceptions import TransportError
from .sdcp.models.printer import PrinterIdentity


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects discovery replies into a queue."""

    def __init__(self, logger: Any = LOGGER) -> None:
        """Initialize the discovery protocol."""
        self.logger = logger
        self.transport: asyncio.DatagramTransport | None = None
        self.replies: asyncio.Queue[tuple[bytes, str]] = asyncio.Queue()

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:  # type: ignore[override]
        """Handle UDP transport ready event."""
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Queue a reply with its sender address."""
        if data.strip() == DISCOVERY_MESSAGE.encode():
            # Our own broadcast looped back
            return
        self.logger.debug("Discovery response received from %s", addr)
        self.replies.put_nowait((data, addr[0]))

    def error_received(self, exc: Exception) -> None:
        """Call when an error is received."""
        self.logger.warning("UDP discovery error: %s", exc)


async def scan(
    timeout: float = DISCOVERY_TIMEOUT,
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
    port: int = DISCOVERY_PORT,
    logger: Any = LOGGER,
) -> AsyncIterator[PrinterIdentity]:
    """
    Broadcast a discovery request and yield printers as they answer.

    The scan ends after timeout seconds, or earlier if the consumer stops
    iterating. A printer that answers more than once is yielded again only
    if its reply changed.

    Arguments:
        timeout: Seconds to listen for replies.
        broadcast_address: The network address to send the discovery message to.
        port: The discovery port printers listen on.
        logger: The logger to use.

    Raises:
        TransportError: If the UDP socket cannot be opened or used.

    """
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: DiscoveryProtocol(logger),
            local_addr=("0.0.0.0", 0),  # noqa: S104
            allow_broadcast=True,
        )
    except OSError as e:
        msg = f"Socket error during discovery: {e}"
        raise TransportError(msg) from e

    seen: dict[str, PrinterIdentity] = {}
    try:
        logger.info("Broadcasting for printer discovery on %s", broadcast_address)
        try:
            transport.sendto(DISCOVERY_MESSAGE.encode(), (broadcast_address, port))
        except OSError as e:
            msg = f"Failed to send discovery request: {e}"
            raise TransportError(msg) from e

        deadline = loop.time() + timeout
        while (remaining := deadline - loop.time()) > 0:
            try:
                data, address = await asyncio.wait_for(
                    protocol.replies.get(), timeout=remaining
                )
            except TimeoutError:
                break
            try:
                identity = PrinterIdentity.from_discovery(data, address)
            except ValueError:
                logger.warning("Ignoring unparseable discovery reply from %s", address)
                continue
            if seen.get(identity.address) == identity:
                continue
            seen[identity.address] = identity
            logger.debug("Discovered printer: %s at %s", identity.name, identity.address)
            yield identity
    finally:
        transport.close()

    if not seen:
        logger.debug("No printers found during discovery.")
    else:
        logger.debug("Discovered %d printer(s).", len(seen))


async def discover_printers(
    timeout: float = DISCOVERY_TIMEOUT,
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
    port: int = DISCOVERY_PORT,
    logger: Any = LOGGER,
) -> list[PrinterIdentity]:
    """Run a full scan and return the latest reply of every printer."""
    found: dict[str, PrinterIdentity] = {}
    async for identity in scan(timeout, broadcast_address, port, logger):
        found[identity.address] = identity
    return list(found.values())
