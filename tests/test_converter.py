"""
Unit tests for the IoT hub to Event Hubs connection string converter.

The proton reactor is replaced by fakes that feed the handler the same
events a live hub would produce.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from proton import Condition

from src.d2c_reader.iothub import converter
from src.d2c_reader.iothub.connection_string import HubConnectionInfo
from src.d2c_reader.iothub.converter import (
    LINK_REDIRECT,
    RedirectHandler,
    convert_iothub_to_eventhub_connection_string,
    resolve_redirect,
)
from src.d2c_reader.iothub.errors import (
    ConversionError,
    InvalidConnectionStringError,
    LinkError,
    RedirectTimeoutError,
)

HUB_CONN_STR = (
    "HostName=myhub.azure-devices.net;"
    "SharedAccessKeyName=service;"
    "SharedAccessKey=abcd=="
)
EXPECTED = (
    "Endpoint=sb://foo.bar.net/;EntityPath=myhub;"
    "SharedAccessKeyName=service;SharedAccessKey=abcd=="
)


@pytest.fixture
def hub_info():
    return HubConnectionInfo.from_connection_string(HUB_CONN_STR)


def _link_error_event(condition):
    return SimpleNamespace(link=SimpleNamespace(remote_condition=condition))


class FakeContainer:
    """Stands in for proton's Container: delivers one link error to the handler."""

    def __init__(self, handler, condition, connection=None):
        self.handler = handler
        self.condition = condition
        self.connection = connection or Mock()

    def run(self):
        self.handler._connection = self.connection
        self.handler.on_link_error(_link_error_event(self.condition))


class TestResolveRedirect:
    """Tests for resolve_redirect."""

    def test_redirect_with_hostname(self, hub_info):
        condition = Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"})
        assert resolve_redirect(condition, hub_info) == EXPECTED

    def test_redirect_without_hostname_keeps_condition(self, hub_info):
        condition = Condition(LINK_REDIRECT, info={"network-host": "foo.bar.net"})

        with pytest.raises(LinkError) as exc_info:
            resolve_redirect(condition, hub_info)

        assert exc_info.value.condition is condition

    def test_redirect_without_info(self, hub_info):
        condition = Condition(LINK_REDIRECT)

        with pytest.raises(LinkError) as exc_info:
            resolve_redirect(condition, hub_info)

        assert exc_info.value.condition is condition

    def test_other_condition_is_passed_through(self, hub_info):
        condition = Condition("amqp:unauthorized-access", "Unauthorized", {"hostname": "foo.bar.net"})

        with pytest.raises(LinkError) as exc_info:
            resolve_redirect(condition, hub_info)

        assert exc_info.value.condition is condition
        assert "amqp:unauthorized-access" in str(exc_info.value)


class TestRedirectHandler:
    """Tests for the reactor handler."""

    def test_on_start_opens_single_attempt_connection(self, hub_info, monkeypatch):
        domain = object()
        monkeypatch.setattr(converter, "_ssl_domain", lambda: domain)
        container = Mock()
        handler = RedirectHandler(hub_info, "SharedAccessSignature sr=x")

        handler.on_start(SimpleNamespace(container=container))

        container.connect.assert_called_once()
        kwargs = container.connect.call_args.kwargs
        assert kwargs["url"] == "amqps://myhub.azure-devices.net:5671"
        assert kwargs["user"] == "service@sas.root.myhub"
        assert kwargs["password"] == "SharedAccessSignature sr=x"
        assert kwargs["reconnect"] is False
        assert kwargs["ssl_domain"] is domain
        container.create_receiver.assert_called_once_with(
            container.connect.return_value,
            source="amqps://myhub.azure-devices.net/messages/events/$management",
        )
        container.schedule.assert_not_called()

    def test_on_start_schedules_timeout(self, hub_info, monkeypatch):
        monkeypatch.setattr(converter, "_ssl_domain", lambda: None)
        container = Mock()
        handler = RedirectHandler(hub_info, "token", timeout=30)

        handler.on_start(SimpleNamespace(container=container))

        container.schedule.assert_called_once_with(30, handler)

    def test_redirect_closes_connection(self, hub_info):
        handler = RedirectHandler(hub_info, "token")
        handler._connection = Mock()

        handler.on_link_error(_link_error_event(Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"})))

        assert handler.result == EXPECTED
        assert handler.error is None
        handler._connection.close.assert_called_once()

    def test_close_failure_is_swallowed(self, hub_info):
        handler = RedirectHandler(hub_info, "token")
        handler._connection = Mock()
        handler._connection.close.side_effect = RuntimeError("socket already gone")

        handler.on_link_error(_link_error_event(Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"})))

        assert handler.result == EXPECTED

    def test_error_cancels_timer(self, hub_info):
        handler = RedirectHandler(hub_info, "token", timeout=10)
        handler._connection = Mock()
        timer = Mock()
        handler._timer = timer

        handler.on_link_error(_link_error_event(Condition("amqp:internal-error")))

        timer.cancel.assert_called_once()
        assert isinstance(handler.error, LinkError)

    def test_timer_records_timeout(self, hub_info):
        handler = RedirectHandler(hub_info, "token", timeout=10)
        handler._connection = Mock()

        handler.on_timer_task(SimpleNamespace())

        assert isinstance(handler.error, RedirectTimeoutError)
        handler._connection.close.assert_called_once()

    def test_transport_error_keeps_condition(self, hub_info):
        handler = RedirectHandler(hub_info, "token")
        condition = Condition("amqp:unauthorized-access", "Authentication failed")

        handler.on_transport_error(SimpleNamespace(transport=SimpleNamespace(condition=condition)))

        assert handler.error.condition is condition

    def test_first_outcome_wins(self, hub_info):
        handler = RedirectHandler(hub_info, "token")
        handler._connection = Mock()
        handler.on_link_error(_link_error_event(Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"})))

        handler.on_transport_error(
            SimpleNamespace(transport=SimpleNamespace(condition=Condition("amqp:connection:forced")))
        )

        assert handler.result == EXPECTED
        assert handler.error is None


class TestConvertIothubToEventhubConnectionString:
    """Tests for the conversion entry point."""

    def test_redirect_resolves(self):
        result = convert_iothub_to_eventhub_connection_string(
            HUB_CONN_STR,
            container_factory=lambda handler: FakeContainer(
                handler, Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"})
            ),
        )
        assert result == EXPECTED

    def test_token_is_scoped_to_events(self):
        handlers = []

        def factory(handler):
            handlers.append(handler)
            return FakeContainer(handler, Condition(LINK_REDIRECT, info={"hostname": "foo.bar.net"}))

        convert_iothub_to_eventhub_connection_string(HUB_CONN_STR, container_factory=factory)

        assert handlers[0].token.startswith(
            "SharedAccessSignature sr=myhub.azure-devices.net%2Fmessages%2Fevents&sig="
        )
        assert handlers[0].token.endswith("&skn=service")

    def test_missing_hostname_fails_with_original_condition(self):
        condition = Condition(LINK_REDIRECT, info={})

        with pytest.raises(LinkError) as exc_info:
            convert_iothub_to_eventhub_connection_string(
                HUB_CONN_STR,
                container_factory=lambda handler: FakeContainer(handler, condition),
            )

        assert exc_info.value.condition is condition

    def test_non_redirect_fails_unchanged(self):
        condition = Condition("amqp:not-found", "The messaging entity could not be found")

        with pytest.raises(LinkError) as exc_info:
            convert_iothub_to_eventhub_connection_string(
                HUB_CONN_STR,
                container_factory=lambda handler: FakeContainer(handler, condition),
            )

        assert exc_info.value.condition is condition

    def test_missing_key_fails_without_network(self):
        factory = Mock()

        with pytest.raises(InvalidConnectionStringError):
            convert_iothub_to_eventhub_connection_string(
                "HostName=myhub.azure-devices.net;SharedAccessKeyName=service",
                container_factory=factory,
            )

        factory.assert_not_called()

    def test_reactor_stopping_without_outcome(self):
        container = Mock()

        with pytest.raises(ConversionError):
            convert_iothub_to_eventhub_connection_string(
                HUB_CONN_STR,
                container_factory=lambda handler: container,
            )

        container.run.assert_called_once()
