"""Debug script for driving a Saturn printer from the command line."""

import asyncio
import logging
import os
import sys

# Add project root to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, project_root)

from loguru import logger  # noqa: E402

from saturn_link.api import SaturnApiClient  # noqa: E402
from saturn_link.sdcp.const import DEBUG  # noqa: E402
from saturn_link.sdcp.models.events import SessionStateChanged  # noqa: E402
from saturn_link.sdcp.models.upload import UploadProgressEvent  # noqa: E402

LOG_LEVEL = "DEBUG"
PRINTER_IP = os.getenv("PRINTER_IP", "10.0.0.212")
UPLOAD_FILE = os.getenv("UPLOAD_FILE")
AUTO_START = os.getenv("AUTO_START", "false").lower() == "true"

logger.remove()
logger.add(sys.stdout, colorize=DEBUG, level=LOG_LEVEL)


class InterceptHandler(logging.Handler):
    """Forward standard logging records from saturn_link to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def on_event(event: object) -> None:
    """Print events the way a UI would display them."""
    if isinstance(event, UploadProgressEvent):
        logger.info(
            "Upload {f}: {s} {p}%", f=event.filename, s=event.state.value, p=event.percent
        )
    elif isinstance(event, SessionStateChanged):
        session = event.session
        if session is None:
            logger.info("Printer: {t}", t=event.translation.text)
        else:
            logger.info(
                "Printer: {t} layer {c}/{n} ({p}, remaining {e})",
                t=event.translation.text,
                c=session.current_layer,
                n=session.total_layers or "?",
                p=session.percent_label,
                e=session.eta_label,
            )
    else:
        logger.debug("Event: {e}", e=event)


async def main() -> None:
    """
    Discover, connect to and monitor a Saturn printer for debugging.

    Scans PRINTER_IP for a printer, connects to it, optionally uploads
    UPLOAD_FILE and then logs telemetry until interrupted.
    """
    client = SaturnApiClient()
    client.add_listener(on_event)
    try:
        printers = await client.scan_printers(broadcast_address=PRINTER_IP)
        if not printers:
            logger.error("No printers discovered.")
            return
        printer = printers[0]
        logger.debug("Model Reported from Printer: {m}", m=printer.model)
        await client.connect(printer)
        if UPLOAD_FILE:
            job = await client.upload_file(UPLOAD_FILE, auto_start=AUTO_START)
            logger.info("Uploaded {f} ({n} bytes)", f=job.filename, n=job.total_bytes)
        logger.debug("Monitoring started")
        while client.is_connected:
            await asyncio.sleep(2)
        logger.warning("Printer connection closed")
    except asyncio.CancelledError:
        logger.info("Interrupted")
    finally:
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
