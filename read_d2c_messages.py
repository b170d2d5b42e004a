# read_d2c_messages.py
"""
Read device-to-cloud messages from an IoT hub's built-in event stream.

If you already have the Event Hubs-compatible endpoint from the Azure portal or
the Azure CLI, set EVENTHUB_CONNECTION_STRING (or the EVENTHUB_COMPATIBLE_*
values) and the conversion step is skipped:

    az iot hub show --query properties.eventHubEndpoints.events.endpoint --name {your IoT Hub name}
    az iot hub show --query properties.eventHubEndpoints.events.path --name {your IoT Hub name}
    az iot hub policy show --name service --query primaryKey --hub-name {your IoT Hub name}

Otherwise IOTHUB_CONNECTION_STRING is converted by connecting to the hub and
following its redirect to the built-in Event Hubs endpoint.
"""
import logging
import signal
import sys
import threading

from src.d2c_reader.config.settings import get_settings
from src.d2c_reader.reader import run

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    for noisy in ["azure", "uamqp", "proton"]:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def install_signal_handlers(stop_event: threading.Event, on_shutdown=None) -> None:
    """Stop reading on Ctrl+C or SIGTERM by closing the running subscriber."""
    def handler(signum, frame):
        logger.info("Received signal %s, closing subscriber", signum)
        stop_event.set()
        if on_shutdown is None:
            return
        try:
            on_shutdown()
        except Exception as e:
            logger.debug("Error closing subscriber: %s", e)

    for signum in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if signum is not None:
            signal.signal(signum, handler)


def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    print("IoT Hub Quickstarts - Read device to cloud messages.")

    stop = threading.Event()
    holder = {"subscriber": None}

    def on_shutdown():
        subscriber = holder.get("subscriber")
        if subscriber is not None:
            subscriber.close()

    def on_subscriber(subscriber):
        holder["subscriber"] = subscriber
        if stop.is_set():
            on_shutdown()

    install_signal_handlers(stop, on_shutdown=on_shutdown)

    try:
        run(settings, on_subscriber=on_subscriber)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received. Stopping…")
    except Exception as e:
        logger.error("Error running sample: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
