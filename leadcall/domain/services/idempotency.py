"""
Idempotency Guard
Collapses repeated webhook deliveries into one logical effect.

- Responses cached in memory, keyed by idempotency key, with a TTL
- Expired entries evicted lazily on lookup, on size pressure, and by a
  periodic background sweep
- Fail-open: any cache failure is logged and the request is treated as new

The cache is process-local. Multi-instance deployments need a shared store.
"""
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class IdempotencyEntry:
    """A cached response for one idempotency key"""
    key: str
    response: Any
    stored_at: float


class IdempotencyGuard:
    """
    Time-bounded response cache for side-effecting webhook requests.

    Flow:
    1. check(key) - return the cached response, or None for a new request
    2. Process the request
    3. store(key, response)
    """

    DEFAULT_TTL_SECONDS = 24 * 60 * 60  # 24 hours
    DEFAULT_MAX_SIZE = 10000
    DEFAULT_SWEEP_INTERVAL = 60 * 60  # 1 hour
    KEY_PREFIX = "auto_"

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, IdempotencyEntry] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    @staticmethod
    def _short(key: str) -> str:
        return f"{key[:16]}..."

    def check(self, key: Optional[str]) -> Optional[Any]:
        """
        Look up a previously processed request.

        Returns:
            The cached response, or None for an unseen or expired key
        """
        if not key:
            return None

        try:
            entry = self._entries.get(key)
            if entry is None:
                return None

            age = self._clock() - entry.stored_at
            if age < self.ttl_seconds:
                logger.info(f"Idempotent request detected: key={self._short(key)}, age={int(age)}s")
                return entry.response

            # Expired, remove it
            self._entries.pop(key, None)
            return None

        except Exception as e:
            logger.error(f"Idempotency lookup failed, treating as new request: {e}")
            return None

    def store(self, key: Optional[str], response: Any) -> None:
        """
        Record the response for a processed request.

        At the size bound, expired entries are swept first. If the cache is
        still full the entry is inserted anyway.
        """
        if not key:
            return

        try:
            if len(self._entries) >= self.max_size:
                self.cleanup()
                if len(self._entries) >= self.max_size:
                    logger.warning(
                        f"Idempotency cache over capacity ({len(self._entries)}/{self.max_size})"
                    )

            self._entries[key] = IdempotencyEntry(
                key=key,
                response=response,
                stored_at=self._clock()
            )
            logger.debug(f"Stored idempotency response: key={self._short(key)}")

        except Exception as e:
            logger.error(f"Failed to store idempotency response: {e}")

    def generate_key(self, lead_data: Dict[str, Any]) -> str:
        """
        Derive a key from identity fields plus a one-minute time bucket.

        Identical submissions within the same minute collapse to one key.
        """
        email = lead_data.get("email")
        key_data = {
            "email": email.strip().lower() if isinstance(email, str) else None,
            "phone": self._normalize_phone(lead_data.get("phone")),
            "source": lead_data.get("source"),
            "timestamp": self._round_to_minute(self._clock()),
        }

        digest = hashlib.sha256(
            json.dumps(key_data, sort_keys=True).encode("utf-8")
        ).hexdigest()

        return f"{self.KEY_PREFIX}{digest[:32]}"

    @staticmethod
    def _normalize_phone(phone: Optional[str]) -> Optional[str]:
        if not phone:
            return None
        return "".join(ch for ch in str(phone) if ch.isdigit() or ch == "+")

    @staticmethod
    def _round_to_minute(timestamp: float) -> int:
        return int(timestamp // 60) * 60

    def cleanup(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        try:
            now = self._clock()
            expired = [
                key for key, entry in list(self._entries.items())
                if now - entry.stored_at >= self.ttl_seconds
            ]
            for key in expired:
                self._entries.pop(key, None)

            logger.info(f"Idempotency cache cleanup: removed {len(expired)} expired entries")
            return len(expired)

        except Exception as e:
            logger.error(f"Idempotency cache cleanup failed: {e}")
            return 0

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.cleanup()

    async def start(self) -> None:
        """Start the periodic background sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"Idempotency sweep started (every {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the background sweep."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "sweeping": self._sweep_task is not None and not self._sweep_task.done(),
        }

    def clear(self) -> None:
        """Clear the entire cache."""
        self._entries.clear()
        logger.warning("Idempotency cache cleared")
