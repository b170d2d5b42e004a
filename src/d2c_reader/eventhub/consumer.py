from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from azure.eventhub import EventHubConsumerClient, TransportType
from azure.eventhub.amqp import AmqpMessageBodyType

from src.d2c_reader.iothub.connection_string import mask_connection_string


logger = logging.getLogger(__name__)

DEFAULT_CONSUMER_GROUP = "$Default"

MessagesCallback = Callable[[List["TelemetryMessage"]], None]
ErrorCallback = Callable[[Exception], None]


def _decode_keys(properties: Optional[Dict[Any, Any]]) -> Dict[Any, Any]:
    # azure-eventhub hands AMQP property keys over as bytes
    if not properties:
        return {}
    return {
        (k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k): v
        for k, v in properties.items()
    }


def _decode_body(event: Any) -> Any:
    """
    Return the body the device sent.

    JSON objects and arrays are decoded, other UTF-8 payloads stay text and
    anything else is handed over as the raw bytes.
    """
    if event.body_type != AmqpMessageBodyType.DATA:
        return event.body

    raw = b"".join(event.body)
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw

    try:
        decoded = json.loads(text)
    except ValueError:
        return text
    return decoded if isinstance(decoded, (dict, list)) else text


@dataclass
class TelemetryMessage:
    """
    One device-to-cloud message.

    - body: telemetry sent by the device
    - properties: application properties set by the device
    - system_properties: properties set by IoT Hub, such as the device id
    """

    body: Any
    properties: Dict[Any, Any] = field(default_factory=dict)
    system_properties: Dict[Any, Any] = field(default_factory=dict)

    @classmethod
    def from_event(cls, event: Any) -> "TelemetryMessage":
        return cls(
            body=_decode_body(event),
            properties=_decode_keys(event.properties),
            system_properties=_decode_keys(event.system_properties),
        )


class EventStreamSubscriber:
    """Subscribes to an Event Hubs-compatible endpoint and hands each batch to a callback"""

    def __init__(
        self,
        connection_string: str,
        consumer_group: str = DEFAULT_CONSUMER_GROUP,
        transport_type: TransportType = TransportType.Amqp,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        self.connection_string = connection_string
        self.consumer_group = consumer_group
        self.transport_type = transport_type
        self.client_factory = client_factory or EventHubConsumerClient.from_connection_string
        self.client = None

    def connect(self):
        """Create the Event Hubs consumer client"""
        logger.info("Connecting to %s", mask_connection_string(self.connection_string))
        logger.info("Using consumer group: %s (transport: %s)", self.consumer_group, self.transport_type)
        self.client = self.client_factory(
            self.connection_string,
            consumer_group=self.consumer_group,
            transport_type=self.transport_type,
        )

    def close(self):
        """Close the consumer client, which ends a running subscribe()"""
        if self.client:
            self.client.close()
            logger.info("Closed Event Hubs consumer")

    def subscribe(self, on_messages: MessagesCallback, on_error: ErrorCallback) -> None:
        """
        Receive messages until the client is closed.

        Args:
            on_messages: Called once per received batch, in delivery order. The next
                batch is not requested until it returns.
            on_error: Called with each error the client reports
        """
        if not self.client:
            self.connect()

        def _on_event_batch(partition_context, events):
            if not events:
                return
            partition_id = getattr(partition_context, "partition_id", None)
            logger.debug("Received batch of %d event(s) from partition %s", len(events), partition_id)
            on_messages([TelemetryMessage.from_event(ev) for ev in events])

        def _on_error(partition_context, error):
            partition_id = getattr(partition_context, "partition_id", None)
            logger.debug("Error on partition %s: %s", partition_id, error)
            on_error(error)

        logger.info("Subscriber running. Press Ctrl+C to exit.")
        with self.client:
            self.client.receive_batch(on_event_batch=_on_event_batch, on_error=_on_error)
