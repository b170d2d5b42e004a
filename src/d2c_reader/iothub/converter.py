"""
Convert an IoT hub connection string into an Event Hubs-compatible one.

The hub's built-in event stream lives behind an Event Hubs namespace whose
host name is not part of the IoT hub connection string. Opening an AMQP
receiver on the hub's "$management" address makes the hub answer with an
"amqp:link:redirect" error naming that host, which is all we need.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import certifi
from proton import SSLDomain
from proton.handlers import MessagingHandler
from proton.reactor import Container

from src.d2c_reader.iothub.auth import generate_sas_token
from src.d2c_reader.iothub.connection_string import (
    EventHubConnectionString,
    HubConnectionInfo,
    mask_connection_string,
)
from src.d2c_reader.iothub.errors import ConversionError, LinkError, RedirectTimeoutError

logger = logging.getLogger(__name__)


AMQPS_PORT = 5671
LINK_REDIRECT = "amqp:link:redirect"
DEFAULT_TOKEN_TTL_MINS = 5


def events_resource_uri(host_name: str) -> str:
    return f"{host_name}/messages/events"


def management_address(host_name: str) -> str:
    return f"amqps://{host_name}/messages/events/$management"


def sas_username(hub_info: HubConnectionInfo) -> str:
    return f"{hub_info.key_name}@sas.root.{hub_info.hub_name}"


def resolve_redirect(condition: Any, hub_info: HubConnectionInfo) -> str:
    """
    Turn a redirect error condition into an Event Hubs connection string.

    Raises:
        LinkError: the condition is not a redirect, or carries no hostname.
            The original condition is available as ``LinkError.condition``.
    """
    if getattr(condition, "name", None) != LINK_REDIRECT:
        raise LinkError(condition)

    info = getattr(condition, "info", None)
    # proton hands the info map over with symbol keys, which compare equal to str
    hostname = info.get("hostname") if hasattr(info, "get") else None
    if not hostname:
        raise LinkError(condition)

    return EventHubConnectionString(
        endpoint_host=str(hostname),
        entity_path=hub_info.hub_name,
        key_name=hub_info.key_name,
        key=hub_info.key,
    ).to_connection_string()


def _ssl_domain() -> SSLDomain:
    """Client TLS settings verifying the hub against the certifi CA bundle."""
    domain = SSLDomain(SSLDomain.MODE_CLIENT)
    domain.set_trusted_ca_db(certifi.where())
    domain.set_peer_authentication(SSLDomain.VERIFY_PEER_NAME)
    return domain


class RedirectHandler(MessagingHandler):
    """
    Reactor handler that opens one receiver and waits for the hub's redirect.

    Exactly one outcome is recorded: ``result`` on a usable redirect,
    ``error`` otherwise. The connection is closed as soon as it is known.
    """

    def __init__(self, hub_info: HubConnectionInfo, token: str, timeout: Optional[float] = None):
        super().__init__()
        self.hub_info = hub_info
        self.token = token
        self.timeout = timeout
        self.result: Optional[str] = None
        self.error: Optional[Exception] = None
        self._connection = None
        self._timer = None

    @property
    def done(self) -> bool:
        return self.result is not None or self.error is not None

    def on_start(self, event):
        host = self.hub_info.host_name
        logger.info("Connecting to %s:%d as %s", host, AMQPS_PORT, sas_username(self.hub_info))

        self._connection = event.container.connect(
            url=f"amqps://{host}:{AMQPS_PORT}",
            ssl_domain=_ssl_domain(),
            reconnect=False,
            sasl_enabled=True,
            allowed_mechs="PLAIN",
            user=sas_username(self.hub_info),
            password=self.token,
            virtual_host=host,
        )
        event.container.create_receiver(self._connection, source=management_address(host))
        logger.info("Opened receiver on %s, waiting for redirect", management_address(host))

        if self.timeout is not None:
            self._timer = event.container.schedule(self.timeout, self)

    def on_link_error(self, event):
        condition = event.link.remote_condition
        try:
            self.result = resolve_redirect(condition, self.hub_info)
            logger.info("Received redirect: %s", mask_connection_string(self.result))
        except LinkError as e:
            logger.error("Link error from %s: %s", self.hub_info.host_name, e)
            self.error = e
        self._finish()

    def on_link_closing(self, event):
        if not self.done:
            self.error = ConversionError(
                f"Receiver on {self.hub_info.host_name} closed without a redirect."
            )
            self._finish()

    def on_connection_error(self, event):
        self._fail(LinkError(event.connection.remote_condition))

    def on_transport_error(self, event):
        self._fail(LinkError(event.transport.condition))

    def on_disconnected(self, event):
        if not self.done:
            self.error = ConversionError(
                f"Disconnected from {self.hub_info.host_name} before a redirect was received."
            )
        self._cancel_timer()

    def on_timer_task(self, event):
        self._timer = None
        self._fail(
            RedirectTimeoutError(
                f"No redirect from {self.hub_info.host_name} within {self.timeout} seconds."
            )
        )

    def _fail(self, error: Exception) -> None:
        if self.done:
            return
        logger.error("Conversion failed: %s", error)
        self.error = error
        self._finish()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _finish(self) -> None:
        self._cancel_timer()
        if self._connection is None:
            return
        try:
            self._connection.close()
        except Exception as e:
            logger.debug("Error closing connection: %s", e)


def convert_iothub_to_eventhub_connection_string(
    connection_string: str,
    token_ttl_mins: float = DEFAULT_TOKEN_TTL_MINS,
    timeout: Optional[float] = None,
    container_factory: Callable[..., Any] = Container,
) -> str:
    """
    Convert an IoT hub connection string into an Event Hubs-compatible one.

    Args:
        connection_string: "HostName=<hub>.azure-devices.net;SharedAccessKeyName=<name>;SharedAccessKey=<key>"
        token_ttl_mins: Validity of the SAS token used for the one connection attempt
        timeout: Seconds to wait for the redirect, None waits indefinitely
        container_factory: Builds the reactor that drives the handler

    Returns:
        "Endpoint=sb://<host>/;EntityPath=<hub>;SharedAccessKeyName=<name>;SharedAccessKey=<key>"

    Raises:
        InvalidConnectionStringError: before any network activity
        LinkError: the hub answered with anything but a usable redirect
        RedirectTimeoutError: the optional timeout elapsed
    """
    hub_info = HubConnectionInfo.from_connection_string(connection_string)
    hub_name = hub_info.hub_name

    token = generate_sas_token(
        events_resource_uri(hub_info.host_name),
        hub_info.key,
        hub_info.key_name,
        token_ttl_mins,
    )

    logger.info("Converting IoT hub %s connection string", hub_name)
    handler = RedirectHandler(hub_info, token, timeout=timeout)
    container_factory(handler).run()

    if handler.error is not None:
        raise handler.error
    if handler.result is None:
        raise ConversionError(f"Reactor stopped before {hub_info.host_name} sent a redirect.")
    return handler.result
