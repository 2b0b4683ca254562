"""Purchase history: one contract, two backends.

CloudHistoryStore keeps an account's checks in the purchases table with no
cap (reads are limited at query time). DeviceHistoryStore keeps a guest's
checks as a JSON array under the device's purchase_history key, newest first,
capped at 50 with the oldest evicted on insert.

Neither store deduplicates: two create() calls with the same price and label
produce two records. Deduplication is the flow controller's job.
Errors from the backend propagate; nothing is swallowed here.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol, runtime_checkable

from mindspend.core.device_storage import PURCHASE_HISTORY, DeviceStorage
from mindspend.db.database import get_connection
from mindspend.db.models import DECISIONS, NewPurchaseRecord, Profile, PurchaseRecord, parse_instant
from mindspend.logging_setup import get_logger

logger = get_logger("mindspend.history")

DEFAULT_LIMIT = 50
DEVICE_CAP = 50


def _now() -> datetime:
    return datetime.now().astimezone()


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_decision(decision: str) -> None:
    if decision not in DECISIONS:
        raise ValueError(f"Unknown decision: {decision!r}")


@runtime_checkable
class HistoryStore(Protocol):
    """Capability interface shared by both backends."""

    def create(self, record: NewPurchaseRecord, now: datetime = None) -> str:
        ...

    def list(self, limit: int = DEFAULT_LIMIT) -> Iterator[PurchaseRecord]:
        ...

    def get(self, record_id: str) -> Optional[PurchaseRecord]:
        ...

    def update_decision(self, record_id: str, decision: str, regret: Optional[bool] = None,
                        now: datetime = None) -> None:
        ...

    def delete(self, record_id: str) -> None:
        ...


def _materialize(record: NewPurchaseRecord, now: datetime) -> PurchaseRecord:
    return PurchaseRecord(
        id=_new_id(),
        price=record.price,
        label=record.label,
        category=record.category,
        timestamp=now,
        profile=record.profile.copy(),
        calculations=dict(record.calculations),
        decision=record.decision,
        time_of_day=now.hour,
    )


class CloudHistoryStore:
    """Account-keyed purchases table."""

    def __init__(self, account_id: int):
        self.account_id = account_id

    def create(self, record: NewPurchaseRecord, now: datetime = None) -> str:
        """Insert a check and return its new id."""
        stored = _materialize(record, now or _now())
        conn = get_connection()
        try:
            conn.execute(
                """INSERT INTO purchases
                   (id, account_id, price, label, category, timestamp, profile,
                    calculations, decision, time_of_day)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    stored.id, self.account_id, stored.price, stored.label, stored.category,
                    stored.timestamp.astimezone(timezone.utc).isoformat(), json.dumps(stored.profile.to_dict()),
                    json.dumps(stored.calculations), stored.decision, stored.time_of_day,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return stored.id

    def list(self, limit: int = DEFAULT_LIMIT) -> Iterator[PurchaseRecord]:
        """Newest first, at most `limit` records."""
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM purchases WHERE account_id = ? ORDER BY timestamp DESC LIMIT ?",
                (self.account_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return iter([self._from_row(row) for row in rows])

    def get(self, record_id: str) -> Optional[PurchaseRecord]:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM purchases WHERE account_id = ? AND id = ?",
                (self.account_id, record_id),
            ).fetchone()
        finally:
            conn.close()
        return self._from_row(row) if row else None

    def update_decision(self, record_id: str, decision: str, regret: Optional[bool] = None,
                        now: datetime = None) -> None:
        """Set decision, and regret + regret_checked_at when regret is given."""
        _check_decision(decision)
        conn = get_connection()
        try:
            if regret is None:
                conn.execute(
                    "UPDATE purchases SET decision=? WHERE account_id=? AND id=?",
                    (decision, self.account_id, record_id),
                )
            else:
                conn.execute(
                    "UPDATE purchases SET decision=?, regret=?, regret_checked_at=? "
                    "WHERE account_id=? AND id=?",
                    (decision, int(regret), (now or _now()).astimezone(timezone.utc).isoformat(), self.account_id, record_id),
                )
            conn.commit()
        finally:
            conn.close()

    def delete(self, record_id: str) -> None:
        """Delete a check. Deleting a missing id is a no-op."""
        conn = get_connection()
        try:
            conn.execute(
                "DELETE FROM purchases WHERE account_id = ? AND id = ?",
                (self.account_id, record_id),
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _from_row(row) -> PurchaseRecord:
        regret = row["regret"]
        checked = row["regret_checked_at"]
        return PurchaseRecord(
            id=row["id"],
            price=row["price"],
            label=row["label"],
            category=row["category"] or "other",
            timestamp=parse_instant(row["timestamp"]),
            profile=Profile.from_dict(json.loads(row["profile"])),
            calculations=json.loads(row["calculations"]),
            decision=row["decision"] or "undecided",
            time_of_day=row["time_of_day"],
            regret=None if regret is None else bool(regret),
            regret_checked_at=parse_instant(checked) if checked else None,
        )


class DeviceHistoryStore:
    """Guest history as a capped JSON array in device storage."""

    def __init__(self, storage: DeviceStorage, cap: int = DEVICE_CAP):
        self.storage = storage
        self.cap = cap

    def _load(self) -> list[dict]:
        data = self.storage.get_json(PURCHASE_HISTORY)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def _save(self, items: list[dict]) -> None:
        self.storage.set_json(PURCHASE_HISTORY, items)

    def create(self, record: NewPurchaseRecord, now: datetime = None) -> str:
        """Prepend a check, evicting the oldest past the cap, and return its id."""
        stored = _materialize(record, now or _now())
        items = self._load()
        items.insert(0, stored.to_dict())
        items.sort(key=lambda item: parse_instant(item.get("timestamp")), reverse=True)
        if len(items) > self.cap:
            logger.debug("Evicting %d oldest guest checks", len(items) - self.cap)
        self._save(items[:self.cap])
        return stored.id

    def list(self, limit: int = DEFAULT_LIMIT) -> Iterator[PurchaseRecord]:
        records = []
        for item in self._load()[:limit]:
            try:
                records.append(PurchaseRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping unreadable guest check on device %s", self.storage.device_id)
        return iter(records)

    def get(self, record_id: str) -> Optional[PurchaseRecord]:
        for record in self.list(self.cap):
            if record.id == record_id:
                return record
        return None

    def update_decision(self, record_id: str, decision: str, regret: Optional[bool] = None,
                        now: datetime = None) -> None:
        _check_decision(decision)
        items = self._load()
        for item in items:
            if str(item.get("id")) == record_id:
                item["decision"] = decision
                if regret is not None:
                    item["regret"] = regret
                    item["regretCheckedAt"] = (now or _now()).isoformat()
                self._save(items)
                return

    def delete(self, record_id: str) -> None:
        items = self._load()
        remaining = [item for item in items if str(item.get("id")) != record_id]
        if len(remaining) != len(items):
            self._save(remaining)

