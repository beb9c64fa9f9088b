"""
Remote control for Elegoo Saturn resin printers over legacy SDCP/MQTT.

Finds printers with a UDP broadcast, hosts the MQTT broker they connect
back to, serves print files over HTTP for upload and turns status
telemetry into print session events for a user interface.
"""

from .api import SaturnApiClient
from .discovery import discover_printers, scan
from .sdcp.models.printer import PrinterIdentity

__all__ = ["PrinterIdentity", "SaturnApiClient", "discover_printers", "scan"]
