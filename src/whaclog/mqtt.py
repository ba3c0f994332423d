"""MQTT helpers.

Topics:
    whac/<gameId>/log -> {"lines": [...]}, one finished session per message
"""

from __future__ import annotations

import json
import logging
import os
import socket
from typing import TYPE_CHECKING, Any, Final

from paho.mqtt import publish
from paho.mqtt.client import Client, ConnectFlags, DisconnectFlags
from paho.mqtt.enums import CallbackAPIVersion
from pydantic import ValidationError

from .models import LogBatch
from .storage import IngestError

if TYPE_CHECKING:
    from collections.abc import Callable

    from paho.mqtt.client import MQTTMessage
    from paho.mqtt.properties import Properties
    from paho.mqtt.reasoncodes import ReasonCode

    from .storage import LogStore

TOPIC_NAMESPACE: Final = "whac"
LOG_TOPICS: Final = [f"{TOPIC_NAMESPACE}/+/log"]

_log = logging.getLogger("MqttClient")


def log_topic(game_id: str) -> str:
    return f"{TOPIC_NAMESPACE}/{game_id}/log"


def publish_log(broker: str, port: int, game_id: str, lines: list[str]) -> None:
    """Publish a finished session log for ingestion.

    Args:
        broker: MQTT broker host
        port: MQTT broker port
        game_id: Session id (topic routing)
        lines: Encoded log lines
    """
    _log.debug("[bright_white on grey30][Game -> MQTT][/] %d lines for %s", len(lines), game_id)
    publish.single(
        log_topic(game_id),
        json.dumps({"lines": lines}),
        hostname=broker,
        port=port,
        qos=1,
    )


def handle_message(store: LogStore, data: dict[str, Any], topic: str) -> None:
    """Route an MQTT message to the store.

    Malformed batches are logged and dropped so the subscriber keeps running.
    """
    if not topic.endswith("/log"):
        _log.warning("[IGNORING] Message on unexpected topic %s", topic)
        return

    try:
        batch = LogBatch.model_validate(data)
        doc = store.ingest(batch.lines)
    except (ValidationError, IngestError) as e:
        _log.warning("[IGNORING] Invalid log batch on %s: %s", topic, e)
        return

    expected = topic.split("/")[1]
    if doc.game_id != expected:
        _log.warning("Topic game id %s does not match log game id %s", expected, doc.game_id)


def subscribe(broker: str, port: int, topics: list[str], handler: Callable[[dict[str, Any], str], None]) -> Client:
    """Subscribe to MQTT topics.

    Args:
        broker: MQTT broker host
        port: MQTT broker port
        topics: List of topics to subscribe to
        handler: Callback for when message is received
    """

    client_id = f"whaclog-{socket.gethostname()}-{os.getpid()}"
    mqttc = Client(client_id=client_id, callback_api_version=CallbackAPIVersion.VERSION2)
    mqttc.reconnect_delay_set(min_delay=1, max_delay=30)

    def on_connect(
        client: Client,
        userdata: Any,  # noqa: ANN401
        flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        _ = client, userdata, flags, properties
        if not reason_code.is_failure:
            _log.info("Connected to [bright_magenta]%s:%d[/]", broker, port)
            for t in topics:
                mqttc.subscribe(t, qos=1)
                _log.info("Subscribed to topic: [bright_green]%s[/]", t)
        else:
            _log.error("MQTT connect failed with rc=%s", reason_code)

    def on_disconnect(
        client: Client,
        userdata: Any,  # noqa: ANN401
        disconnect_flags: DisconnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        _ = client, userdata, disconnect_flags, properties
        if reason_code.is_failure:
            _log.warning("Disconnected unexpectedly: %s, will reconnect...", reason_code)
        else:
            _log.info("Disconnected: %s", reason_code)

    def on_message(
        client: Client,
        userdata: Any,  # noqa: ANN401
        message: MQTTMessage,
    ) -> None:
        _ = client, userdata
        try:
            _log.debug("Received message on %s", message.topic)
            handler(json.loads(message.payload.decode()), message.topic)
        except Exception:
            _log.exception("Error processing message on %s", message.topic)

    mqttc.on_connect = on_connect
    mqttc.on_disconnect = on_disconnect
    mqttc.on_message = on_message
    _log.debug("Connecting to MQTT broker [bright_magenta]%s:%d[/]", broker, port)
    mqttc.connect(broker, port)
    return mqttc
