"""Per-device key-value storage backed by the device_storage table.

Each browser gets an opaque device id (kept in a cookie by the web layer).
Values are plain strings; callers JSON-encode structured data.

Known keys:
    guest_mode          "true" while the device is in guest mode
    profile             JSON-encoded Profile for guest sessions
    purchase_history    JSON array of PurchaseRecord, newest first, max 50
    last_ethical_check  epoch milliseconds of the last weekly prompt answer
    saved_check         dedup key of the last price check saved from this device
"""

import json
import uuid
from typing import Optional

from mindspend.db.database import get_connection
from mindspend.logging_setup import get_logger

logger = get_logger("mindspend.device_storage")

GUEST_MODE = "guest_mode"
PROFILE = "profile"
PURCHASE_HISTORY = "purchase_history"
LAST_ETHICAL_CHECK = "last_ethical_check"
SAVED_CHECK = "saved_check"


def new_device_id() -> str:
    return uuid.uuid4().hex


class DeviceStorage:
    """localStorage-style get/set/remove scoped to one device id."""

    def __init__(self, device_id: str):
        self.device_id = device_id

    def get_item(self, key: str, default: str = None) -> Optional[str]:
        """Return the value for a key, or default if not found."""
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT value FROM device_storage WHERE device_id = ? AND key = ?",
                (self.device_id, key),
            ).fetchone()
            return row["value"] if row else default
        finally:
            conn.close()

    def set_item(self, key: str, value: str) -> None:
        """Insert or update a key (upsert)."""
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO device_storage (device_id, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT(device_id, key) DO UPDATE SET value=excluded.value",
                (self.device_id, key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def remove_item(self, key: str) -> None:
        conn = get_connection()
        try:
            conn.execute(
                "DELETE FROM device_storage WHERE device_id = ? AND key = ?",
                (self.device_id, key),
            )
            conn.commit()
        finally:
            conn.close()

    def get_json(self, key: str):
        """Decode a JSON value. Missing or corrupt data reads as None."""
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Corrupt JSON under %r for device %s; treating as empty", key, self.device_id)
            return None

    def set_json(self, key: str, value) -> None:
        self.set_item(key, json.dumps(value))

    def claim(self, key: str, value: str) -> bool:
        """Set key to value unless it already holds it. True if this call changed it.

        A single upsert, so concurrent claims of the same value see one winner.
        """
        conn = get_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO device_storage (device_id, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT(device_id, key) DO UPDATE SET value=excluded.value "
                "WHERE device_storage.value != excluded.value",
                (self.device_id, key, value),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()
