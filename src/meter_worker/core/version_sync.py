"""
Logic version sync with the coordinator.

On every (re)connect the worker sends check_version with the hash of its on-disk
logic file (or null). The coordinator answers with either:
- update_logic_file {content}: write the content, then reload the logic module
- logic_uptodate: nothing to do

Failures never propagate: the worker stays connected with its previous module.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

from meter_worker.core.channel import Channel
from meter_worker.logic.store import LogicStore, LogicStoreError
from meter_worker.mqtt_topics import EVT_CHECK_VERSION, EVT_LOGIC_UPTODATE, EVT_UPDATE_LOGIC_FILE

logger = logging.getLogger(__name__)


class VersionSync:
    def __init__(self, channel: Channel, store: LogicStore) -> None:
        self._channel = channel
        self._store = store

    def register(self) -> None:
        self._channel.on_connected(self.on_connected)
        self._channel.on_message(EVT_UPDATE_LOGIC_FILE, self.on_update_logic_file)
        self._channel.on_message(EVT_LOGIC_UPTODATE, self.on_logic_uptodate)

    def on_connected(self) -> None:
        self.request_check()

    def request_check(self) -> Optional[str]:
        """Send check_version with the current on-disk hash. Returns the hash sent."""
        local_hash = self._store.local_hash()
        try:
            self._channel.send(EVT_CHECK_VERSION, local_hash)
        except Exception as exc:
            logger.error("Failed to send check_version: %s", exc)
            return local_hash
        logger.info("Sent check_version (hash=%s)", local_hash)
        return local_hash

    def on_update_logic_file(self, payload_str: str) -> bool:
        """
        Persist pushed logic content and reload it.

        Returns True if the new content is now the loaded module.
        """
        try:
            obj = json.loads(payload_str) if payload_str else {}
        except json.JSONDecodeError as exc:
            logger.error("Update ignored: invalid JSON: %s", exc)
            return False

        content = obj.get("content") if isinstance(obj, dict) else None
        if not isinstance(content, str):
            logger.error("Update ignored: payload has no string 'content'")
            return False

        logger.info("Downloading new logic file from coordinator...")
        data = content.encode("utf-8")
        try:
            self._store.write(data)
        except LogicStoreError as exc:
            logger.error("Update failed: %s", exc)
            return False

        logger.info("File saved. Reloading logic...")
        previous = self._store.current()
        module = self._store.reload()
        if module is previous:
            logger.error("Update failed: new logic could not be loaded; keeping previous module")
            return False
        if module.ready:
            logger.info("Ready for tasks!")
        return True

    def on_logic_uptodate(self, payload_str: str = "") -> None:
        logger.info("Worker logic is up to date.")
