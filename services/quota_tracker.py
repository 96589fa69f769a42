"""
Daily usage quota per identity.

Anonymous visitors and each authenticated user get an independent record
stored under its own key. A record whose date is not today is reset on read,
and the reset is written back immediately.
"""
import json
import logging
import re
from datetime import date
from typing import Callable, Dict, Optional

from models.config import QuotaConfig
from models.data_models import UsageRecord
from models.errors import StorageUnavailable
from services.kv_store import KeyValueStore

ANONYMOUS_IDENTITIES = {None, "", "anon", "anonymous"}


class QuotaTracker:
    """Tracks analyses used today; storage failures degrade to memory."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[QuotaConfig] = None,
        today: Callable[[], date] = date.today,
    ):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.config = config or QuotaConfig()
        self._today = today
        # 存储不可用时（例如只读目录）的会话内回退记录
        self._memory: Dict[str, UsageRecord] = {}

    @staticmethod
    def is_anonymous(identity: Optional[str]) -> bool:
        return identity in ANONYMOUS_IDENTITIES

    def storage_key(self, identity: Optional[str]) -> str:
        if self.is_anonymous(identity):
            return f"{self.config.key_prefix}_anon"
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", str(identity))
        return f"{self.config.key_prefix}_user_{safe}"

    def limit_for(self, identity: Optional[str]) -> int:
        if self.is_anonymous(identity):
            return self.config.anonymous_limit
        return self.config.authenticated_limit

    def _read(self, key: str) -> Optional[UsageRecord]:
        if key in self._memory:
            return self._memory[key]
        try:
            raw = self.store.get(key)
        except StorageUnavailable as e:
            self.logger.warning(f"Usage store unavailable, using in-memory record: {e}")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return UsageRecord(count=max(0, int(data["count"])), date=str(data["date"]))
        except (ValueError, TypeError, KeyError) as e:
            self.logger.warning(f"Usage record {key} is malformed, resetting: {e}")
            return None

    def _write(self, key: str, record: UsageRecord) -> None:
        if key not in self._memory:
            try:
                self.store.set(key, json.dumps(record.to_dict()))
                return
            except StorageUnavailable as e:
                self.logger.warning(f"Usage store unavailable, keeping record in memory: {e}")
        self._memory[key] = record

    def get_usage(self, identity: Optional[str] = None) -> UsageRecord:
        """Current record for the identity, reset (and persisted) on calendar-day rollover."""
        key = self.storage_key(identity)
        today = self._today().isoformat()
        record = self._read(key)
        if record is None or record.date != today:
            if record is not None:
                self.logger.info(f"新的一天，重置使用次数：{key}")
            record = UsageRecord(count=0, date=today)
            self._write(key, record)
        return record

    def remaining_uses(self, identity: Optional[str] = None) -> int:
        """Raw remaining uses; negative when the counter overshot the limit."""
        return self.limit_for(identity) - self.get_usage(identity).count

    def display_remaining(self, identity: Optional[str] = None) -> int:
        return max(0, self.remaining_uses(identity))

    def is_exhausted(self, identity: Optional[str] = None) -> bool:
        return self.remaining_uses(identity) <= 0

    def increment_usage(self, identity: Optional[str] = None) -> UsageRecord:
        """Record one completed analysis."""
        key = self.storage_key(identity)
        current = self.get_usage(identity)
        record = UsageRecord(count=current.count + 1, date=current.date)
        self._write(key, record)
        self.logger.debug(f"Usage for {key}: {record.count}/{self.limit_for(identity)}")
        return record
