"""Saturn printer identity models."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


def normalize_address(address: str) -> str:
    """Strip the IPv6-mapped prefix from an IPv4 address."""
    if address.startswith("::ffff:"):
        return address[7:]
    return address


@dataclass(frozen=True)
class PrinterIdentity:
    """
    A printer reachable on the network.

    Attributes:
        name (str): The name of the printer.
        address (str): The IP address of the printer.
        model (str | None): The machine model, e.g. "Saturn 3 Ultra".
        mainboard_id (str | None): The unique ID of the printer's mainboard.
        connection_id (str | None): The session uuid the printer expects as "Id".

    Example usage:

    >>> reply = '''
    ... {
    ...     "Id": "0a69ee780fbd40d7bfb95b312250bf46",
    ...     "Data": {
    ...         "Attributes": {
    ...             "Name": "Saturn",
    ...             "MachineName": "Saturn 3 Ultra",
    ...             "MainboardID": "ABCDEF"
    ...         }
    ...     }
    ... }
    ... '''
    >>> PrinterIdentity.from_discovery(reply, "10.0.0.5").name
    'Saturn'

    """

    name: str
    address: str
    model: str | None = None
    mainboard_id: str | None = None
    connection_id: str | None = None

    @classmethod
    def from_discovery(cls, payload: str | bytes, address: str) -> PrinterIdentity:
        """
        Create an identity from a discovery reply.

        Arguments:
            payload: The JSON reply body.
            address: The sender address of the reply.

        Raises:
            ValueError: If the reply is not a JSON object.

        """
        j: Any = json.loads(payload)
        if not isinstance(j, dict):
            msg = "Discovery reply is not a JSON object"
            raise ValueError(msg)  # noqa: TRY004
        data_dict = j.get("Data", j)
        if not isinstance(data_dict, dict):
            data_dict = {}
        # Support both legacy Saturn (Attributes) and flat format
        attrs = data_dict.get("Attributes", data_dict)
        if not isinstance(attrs, dict):
            attrs = {}

        address = normalize_address(address)
        return cls(
            name=attrs.get("Name") or address,
            address=address,
            model=attrs.get("MachineName"),
            mainboard_id=attrs.get("MainboardID"),
            connection_id=j.get("Id") or None,
        )

    @classmethod
    def from_address(cls, address: str) -> PrinterIdentity:
        """Create an identity for a manually entered address."""
        address = normalize_address(address.strip())
        return cls(name=address, address=address)

    def to_dict(self) -> dict[str, Any]:
        """Return a dictionary containing all attributes."""
        return {
            "name": self.name,
            "address": self.address,
            "model": self.model,
            "mainboard_id": self.mainboard_id,
            "connection_id": self.connection_id,
        }


class PrinterAttributes:
    """
    Represents the attributes a printer reports on its attributes topic.

    Attributes:
        name (str | None): The name of the printer.
        machine_name (str | None): The machine model.
        brand_name (str | None): The brand name.
        firmware_version (str | None): The firmware version.
        resolution (str | None): The LCD resolution.
        mainboard_id (str | None): The mainboard ID.
        mainboard_ip (str | None): The mainboard IP address.
        support_file_types (list[str]): Supported file types.

    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        """Initialize from the attributes payload, tolerating missing keys."""
        if not isinstance(data, dict):
            data = {}
        if isinstance(data.get("Data"), dict):
            data = data["Data"]
        attrs = data.get("Attributes", data)
        if not isinstance(attrs, dict):
            attrs = {}
        self.name: str | None = attrs.get("Name")
        self.machine_name: str | None = attrs.get("MachineName")
        self.brand_name: str | None = attrs.get("BrandName")
        self.firmware_version: str | None = attrs.get("FirmwareVersion")
        self.resolution: str | None = attrs.get("Resolution")
        self.mainboard_id: str | None = attrs.get("MainboardID")
        self.mainboard_ip: str | None = attrs.get("MainboardIP")
        self.support_file_types: list[str] = attrs.get("SupportFileType") or []
