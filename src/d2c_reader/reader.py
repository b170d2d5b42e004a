from __future__ import annotations

import logging
from typing import Callable, Optional

from azure.eventhub import TransportType

from src.d2c_reader.config.settings import Settings
from src.d2c_reader.console import print_error, print_messages
from src.d2c_reader.eventhub.consumer import ErrorCallback, EventStreamSubscriber, MessagesCallback
from src.d2c_reader.iothub.connection_string import build_eventhub_connection_string
from src.d2c_reader.iothub.converter import convert_iothub_to_eventhub_connection_string
from src.d2c_reader.iothub.errors import InvalidConnectionStringError


def resolve_eventhub_connection_string(
    settings: Settings,
    convert: Callable[..., str] = convert_iothub_to_eventhub_connection_string,
) -> str:
    """
    Pick the Event Hubs-compatible connection string to read from.

    A configured Event Hubs connection string wins, then the endpoint/path/key
    read with the Azure CLI, and only then is the IoT hub connection string
    converted over the network.
    """
    if settings.eventhub_connection_string:
        logging.info("Using configured Event Hubs-compatible connection string")
        return settings.eventhub_connection_string

    if settings.eventhub_compatible_endpoint:
        logging.info("Building Event Hubs-compatible connection string from endpoint settings")
        return build_eventhub_connection_string(
            endpoint=settings.eventhub_compatible_endpoint,
            entity_path=settings.eventhub_compatible_path,
            key=settings.eventhub_shared_access_key,
            key_name=settings.eventhub_shared_access_key_name,
        )

    if not settings.iothub_connection_string:
        raise InvalidConnectionStringError(
            "Set IOTHUB_CONNECTION_STRING or EVENTHUB_CONNECTION_STRING."
        )

    return convert(
        settings.iothub_connection_string,
        token_ttl_mins=settings.sas_token_ttl_mins,
        timeout=settings.redirect_timeout_secs,
    )


def create_subscriber(settings: Settings, connection_string: str) -> EventStreamSubscriber:
    transport_type = TransportType.AmqpOverWebsocket if settings.use_websockets else TransportType.Amqp
    return EventStreamSubscriber(
        connection_string,
        consumer_group=settings.consumer_group,
        transport_type=transport_type,
    )


def run(
    settings: Settings,
    on_messages: MessagesCallback = print_messages,
    on_error: ErrorCallback = print_error,
    on_subscriber: Optional[Callable[[EventStreamSubscriber], None]] = None,
) -> None:
    """Resolve the event stream endpoint, then print messages until stopped"""
    connection_string = resolve_eventhub_connection_string(settings)

    subscriber = create_subscriber(settings, connection_string)
    if on_subscriber:
        on_subscriber(subscriber)
    subscriber.subscribe(on_messages=on_messages, on_error=on_error)
