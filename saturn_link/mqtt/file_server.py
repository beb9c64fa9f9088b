"""
Minimal local file host for Saturn printers (used for MQTT upload).

Serves registered files over HTTP so the printer can download them
via URL provided in the SDCP Upload command.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from saturn_link.const import DEFAULT_BIND_ADDRESS, DEFAULT_CHUNK_SIZE, DEFAULT_HTTP_PORT

from .const import LOGGER

# Called after every written chunk with (chunk_length, bytes_served)
ChunkListener = Callable[[int, int], None]


@dataclass
class HostedFile:
    path: str
    size: int
    md5: str
    name: str
    listener: ChunkListener | None = None


class SaturnFileHost:
    """Lightweight aiohttp file host."""

    def __init__(
        self,
        host: str = DEFAULT_BIND_ADDRESS,
        port: int = DEFAULT_HTTP_PORT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Any = LOGGER,
    ) -> None:
        if chunk_size <= 0:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.logger = logger
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._app: web.Application | None = None
        self._routes: dict[str, HostedFile] = {}
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._runner is not None and self._site is not None

    async def start(self) -> None:
        if self.is_running:
            return

        self._app = web.Application()
        # HEAD is routed to the same handler
        self._app.add_routes([web.get("/{name}", self._serve)])
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        try:
            self._site = web.TCPSite(self._runner, self.host, self.port)
            await self._site.start()
        except OSError:
            if self.port == 0:
                await self.stop()
                raise
            self.logger.warning("HTTP port %s is busy. Using a random port.", self.port)
            self._site = web.TCPSite(self._runner, self.host, 0)
            await self._site.start()
        # Discover bound port (if ephemeral)
        if self._runner.addresses:
            self.port = self._runner.addresses[0][1]
        self.logger.info("File host listening on port %s", self.port)

    async def stop(self) -> None:
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._app = None
        self._runner = None
        self._site = None
        self._routes.clear()

    async def register_file(
        self,
        path: str,
        *,
        md5: str,
        listener: ChunkListener | None = None,
    ) -> HostedFile:
        """
        Register a file to be served.

        Returns HostedFile with a random route name used in the URL.
        """
        async with self._lock:
            if not os.path.exists(path):  # noqa: PTH110
                msg = f"File does not exist: {path}"
                raise FileNotFoundError(msg)

            ext = os.path.splitext(path)[1].lower()  # noqa: PTH122
            route_name = f"{uuid.uuid4().hex}{ext}"
            size = os.path.getsize(path)  # noqa: PTH202
            hosted = HostedFile(
                path=path, size=size, md5=md5, name=route_name, listener=listener
            )
            self._routes[route_name] = hosted
            return hosted

    async def unregister_file(self, name: str) -> None:
        async with self._lock:
            self._routes.pop(name, None)

    def url_for(self, hosted: HostedFile) -> str:
        """Download URL for the printer, which fills in its view of our address."""
        return f"http://${{ipaddr}}:{self.port}/{hosted.name}"

    async def _serve(self, request: web.Request) -> web.StreamResponse:
        name = request.match_info.get("name", "")
        hosted = self._routes.get(name)
        if not hosted:
            self.logger.debug("File host: unknown route %s", name)
            return web.Response(status=404, text="Not Found")

        headers = {
            "Content-Type": "application/octet-stream",
            "Etag": hosted.md5,
            "Content-Length": str(hosted.size),
        }

        resp = web.StreamResponse(status=200, headers=headers)
        await resp.prepare(request)
        if request.method == "HEAD":
            await resp.write_eof()
            return resp

        self.logger.debug("File host: serving %s to %s", hosted.path, request.remote)
        sent = 0
        with open(hosted.path, "rb") as f:  # noqa: PTH123
            while True:
                data = f.read(self.chunk_size)
                if not data:
                    break
                # write() hands the chunk to the transport, with backpressure
                await resp.write(data)
                sent += len(data)
                if hosted.listener is not None:
                    hosted.listener(len(data), sent)

        await resp.write_eof()
        return resp
