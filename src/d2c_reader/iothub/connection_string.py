"""Parsing and building of IoT hub and Event Hubs connection strings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict

from src.d2c_reader.iothub.errors import InvalidConnectionStringError


HOST_NAME = "HostName"
SHARED_ACCESS_KEY_NAME = "SharedAccessKeyName"
SHARED_ACCESS_KEY = "SharedAccessKey"


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """
    Split a "Key=Value;Key=Value" string into a dict.

    Pairs may come in any order. Values are split on the first "=" only,
    since base64 keys end in "=" padding.
    """
    parts: Dict[str, str] = {}
    for segment in connection_string.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            continue
        parts[key.strip()] = value.strip()
    return parts


@dataclass(frozen=True)
class HubConnectionInfo:
    host_name: str
    key_name: str
    key: str

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "HubConnectionInfo":
        parts = parse_connection_string(connection_string or "")
        host_name = parts.get(HOST_NAME)
        key_name = parts.get(SHARED_ACCESS_KEY_NAME)
        key = parts.get(SHARED_ACCESS_KEY)

        if not host_name or not key_name or not key:
            raise InvalidConnectionStringError("Invalid IotHub connection string.")

        return cls(host_name=host_name, key_name=key_name, key=key)

    @property
    def hub_name(self) -> str:
        # 'myhub.azure-devices.net' -> 'myhub'
        name = self.host_name.split(".")[0]
        if not name:
            raise InvalidConnectionStringError(
                "Unable to extract the IotHub name from the connection string."
            )
        return name

    def to_connection_string(self) -> str:
        return (
            f"{HOST_NAME}={self.host_name};"
            f"{SHARED_ACCESS_KEY_NAME}={self.key_name};"
            f"{SHARED_ACCESS_KEY}={self.key}"
        )


@dataclass(frozen=True)
class EventHubConnectionString:
    endpoint_host: str
    entity_path: str
    key_name: str
    key: str

    def to_connection_string(self) -> str:
        return (
            f"Endpoint=sb://{self.endpoint_host}/;"
            f"EntityPath={self.entity_path};"
            f"{SHARED_ACCESS_KEY_NAME}={self.key_name};"
            f"{SHARED_ACCESS_KEY}={self.key}"
        )

    def __str__(self) -> str:
        return self.to_connection_string()


def build_eventhub_connection_string(
    endpoint: str,
    entity_path: str,
    key: str,
    key_name: str = "service",
) -> str:
    """
    Form an Event Hubs-compatible connection string from values read with the Azure CLI:

        az iot hub show --query properties.eventHubEndpoints.events.endpoint --name {hub}
        az iot hub show --query properties.eventHubEndpoints.events.path --name {hub}
        az iot hub policy show --name service --query primaryKey --hub-name {hub}
    """
    if not endpoint or not entity_path or not key or not key_name:
        raise InvalidConnectionStringError("Incomplete Event Hubs-compatible endpoint settings.")

    # The CLI reports the endpoint as 'sb://<host>/'
    host = re.sub(r"^sb://", "", endpoint.strip()).rstrip("/")
    return EventHubConnectionString(
        endpoint_host=host,
        entity_path=entity_path,
        key_name=key_name,
        key=key,
    ).to_connection_string()


def mask_connection_string(connection_string: str) -> str:
    """Redact the SharedAccessKey value so the string can be logged."""
    if not connection_string:
        return "[empty]"
    return re.sub(
        r"(SharedAccessKey=)[^;]+", r"\1***REDACTED***", connection_string, flags=re.IGNORECASE
    )
