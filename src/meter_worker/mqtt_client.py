"""
MQTT channel for the meter worker.

Authenticates with the worker identity, subscribes to the worker's cmd/<event> topics,
publishes evt/<event> messages, a retained online/offline status (LWT) and a periodic heartbeat.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from meter_worker.identity import WorkerIdentity
from meter_worker.mqtt_topics import EVT_HEARTBEAT, TopicSchema

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]
ConnectedCallback = Callable[[], None]


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkerMQTTClient:
    """
    Channel between the worker and the coordinator.

    Register handlers with on_message()/on_connected() before connect(). Handlers run one
    at a time, in arrival order, on a single worker thread so the paho network loop is
    never blocked by message processing.
    """

    def __init__(
        self,
        host: str,
        port: int,
        identity: WorkerIdentity,
        version: str,
        *,
        keepalive: int = 60,
        heartbeat_interval_s: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.identity = identity
        self.version = version
        self.keepalive = keepalive

        self.topics = TopicSchema(identity.machine_id)
        self.client_id = f"worker.{identity.machine_id}"

        self._client: Optional[mqtt.Client] = None
        # One worker: inbound events are handled one at a time, in arrival order.
        # Long work (task execution) is offloaded by the handlers themselves.
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="mqtt-msg"
        )

        self._handlers: dict[str, MessageHandler] = {}
        self._connected_callbacks: list[ConnectedCallback] = []

        self._hb_thread: Optional[threading.Thread] = None
        self._hb_stop_event = threading.Event()
        self._hb_interval_s = heartbeat_interval_s

    # -------------------------
    # Channel API
    # -------------------------
    def on_message(self, event: str, handler: MessageHandler) -> None:
        """Route inbound cmd/<event> payloads (decoded UTF-8) to handler."""
        topic = self.topics.cmd(event)
        self._handlers[topic] = handler
        if self._client and self._client.is_connected():
            self._client.subscribe(topic, qos=1)
            logger.info("Subscribed: %s", topic)

    def on_connected(self, callback: ConnectedCallback) -> None:
        """Invoke callback after every successful (re)connect."""
        self._connected_callbacks.append(callback)

    def send(self, event: str, payload: Any) -> Any:
        """JSON-encode payload and publish it on evt/<event>."""
        return self.publish(self.topics.evt(event), payload, qos=1)

    def publish(self, topic: str, payload: Any, *, qos: int = 0, retain: bool = False) -> Any:
        if not self._client:
            raise RuntimeError("MQTT client not connected")
        return self._client.publish(topic, payload=json.dumps(payload), qos=qos, retain=retain)

    # -------------------------
    # Heartbeat
    # -------------------------
    def _start_heartbeat(self) -> None:
        if self._hb_thread or self._hb_interval_s <= 0:
            return
        self._hb_stop_event.clear()
        self._hb_thread = threading.Thread(
            target=self._heartbeat_loop,
            daemon=True,
            name="mqtt-heartbeat",
        )
        self._hb_thread.start()

    def _stop_heartbeat(self) -> None:
        if not self._hb_thread:
            return
        self._hb_stop_event.set()
        if self._hb_thread is not threading.current_thread():
            self._hb_thread.join(timeout=2.0)
        self._hb_thread = None

    def _heartbeat_loop(self) -> None:
        while not self._hb_stop_event.wait(timeout=self._hb_interval_s):
            if not (self._client and self._client.is_connected()):
                continue
            try:
                self.send(EVT_HEARTBEAT, {})
            except Exception as exc:
                logger.error("Heartbeat publish failed: %s", exc)

    # -------------------------
    # paho callbacks
    # -------------------------
    def _publish_status(self, state: str) -> None:
        if not self._client:
            return
        payload = {
            "state": state,
            "machine_id": self.identity.machine_id,
            "version": self.version,
            "ts": _utc_iso(),
        }
        self._client.publish(
            self.topics.status(),
            payload=json.dumps(payload),
            qos=1,
            retain=True,
        )

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code != 0:
            logger.error("Connection failed rc=%s", reason_code)
            return

        logger.info("Connected to coordinator as %s", self.identity.machine_id)

        # Copy: handlers may be registered concurrently
        for topic in list(self._handlers.keys()):
            client.subscribe(topic, qos=1)
            logger.info("Subscribed: %s", topic)

        try:
            self._publish_status("online")
        except Exception as exc:
            logger.warning("Failed to publish online status: %s", exc)

        self._start_heartbeat()

        for callback in list(self._connected_callbacks):
            self._executor.submit(callback)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code != 0:
            logger.warning("Unexpected disconnect rc=%s", reason_code)
        self._stop_heartbeat()

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        handler = self._handlers.get(msg.topic)
        if not handler:
            logger.warning("Unhandled topic: %s", msg.topic)
            return
        try:
            payload_str = msg.payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.error("Payload decode failed topic=%s err=%s", msg.topic, exc)
            return
        self._executor.submit(handler, payload_str)

    # -------------------------
    # Lifecycle
    # -------------------------
    def connect(self) -> bool:
        logger.info("Connecting to %s:%s as %s...", self.host, self.port, self.identity.machine_id)
        try:
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            client.username_pw_set(self.identity.machine_id, self.identity.secret_key)

            # Broker publishes this on crash or lost connection.
            lwt_payload = {"state": "offline", "machine_id": self.identity.machine_id, "version": self.version}
            client.will_set(
                self.topics.status(),
                payload=json.dumps(lwt_payload),
                qos=1,
                retain=True,
            )
            client.reconnect_delay_set(min_delay=1, max_delay=30)

            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message

            # Assigned before the loop starts so _on_connect sees it
            self._client = client
            client.connect(self.host, self.port, keepalive=self.keepalive)
            client.loop_start()
            return True
        except Exception:
            logger.exception("Failed to connect to MQTT broker")
            self._client = None
            return False

    def disconnect(self) -> None:
        if not self._client:
            return
        try:
            self._stop_heartbeat()
            self._publish_status("offline")
            self._client.loop_stop()
            self._client.disconnect()
        finally:
            self._client = None
            self._executor.shutdown(wait=False, cancel_futures=True)

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())
