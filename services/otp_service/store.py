import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class OtpRecord:
    otp: str
    expires: float
    last_sent_at: float
    cooldown_until: float
    window_start: float
    send_count: int
    last_request_id: str
    attempts: int = 0


class OtpStore:
    """In-process TTL map of pending one-time codes, keyed by normalized email.

    Each app owns its own instance (see main.py), so tests get isolated state.
    start()/stop() manage the periodic purge of expired records.
    """

    def __init__(self, clock: Callable[[], float] = time.time, purge_interval: float = 600):
        self._records: dict[str, OtpRecord] = {}
        self._clock = clock
        self._purge_interval = purge_interval
        self._purge_task: Optional[asyncio.Task] = None

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[OtpRecord]:
        return self._records.get(key)

    def set(self, key: str, record: OtpRecord) -> None:
        self._records[key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def __len__(self) -> int:
        return len(self._records)

    def purge_expired(self) -> int:
        now = self.now()
        expired = [k for k, rec in self._records.items() if rec.expires < now]
        for key in expired:
            del self._records[key]
        return len(expired)

    async def _purge_loop(self):
        while True:
            await asyncio.sleep(self._purge_interval)
            removed = self.purge_expired()
            if removed:
                logger.info("otp_store_purged", removed=removed)

    def start(self) -> None:
        if self._purge_task is None:
            self._purge_task = asyncio.create_task(self._purge_loop())

    async def stop(self) -> None:
        if self._purge_task is not None:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None
        self._records.clear()
