"""Default callbacks that print telemetry to the console"""

from __future__ import annotations

import json
import logging
from typing import List

from src.d2c_reader.eventhub.consumer import TelemetryMessage


def _printable(value):
    # AMQP properties and binary bodies arrive as bytes
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _to_json(value) -> str:
    return json.dumps(value, default=_printable)


def print_error(error: Exception) -> None:
    logging.error("%s", error)


def print_messages(messages: List[TelemetryMessage]) -> None:
    # - Telemetry is sent in the message body
    # - The device can add arbitrary properties to the message
    # - IoT Hub adds system properties, such as Device Id, to the message.
    for message in messages:
        print("Telemetry received: ")
        print(_to_json(message.body))
        print("Properties (set by device): ")
        print(_to_json(message.properties))
        print("System properties (set by IoT Hub): ")
        print(_to_json(message.system_properties))
        print("")
