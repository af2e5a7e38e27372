# flasharb/guard.py
"""
Trading Circuit Breaker
Halts execution, never detection, when recent results or network
conditions say live trading should pause.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Tuple

from flasharb.config import GuardSettings
from flasharb.models import ExecutionRecord, Outcome

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600


class ExecutionGuard:

    def __init__(
        self,
        settings: GuardSettings = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or GuardSettings()
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()

        self.consecutive_failures = 0
        self.paused_until = 0.0
        self._trades = deque()  # submission times within the last hour
        self._loss_day = None
        self.daily_gas_loss_wei = 0

    def _today(self):
        return datetime.fromtimestamp(self._wall_clock(), tz=timezone.utc).date()

    def _roll_day(self):
        today = self._today()
        if today != self._loss_day:
            self._loss_day = today
            self.daily_gas_loss_wei = 0

    def _prune(self, now: float):
        while self._trades and now - self._trades[0] >= HOUR_SECONDS:
            self._trades.popleft()

    def allow(self, network_gas_price: int = 0) -> Tuple[bool, str]:
        """(allowed, reason); reason is empty when allowed"""
        with self._lock:
            now = self._clock()
            self._roll_day()
            self._prune(now)

            if now < self.paused_until:
                return False, f"paused after {self.settings.max_consecutive_failures} failures ({self.paused_until - now:.0f}s left)"
            if self.daily_gas_loss_wei >= self.settings.max_daily_gas_loss_wei:
                return False, f"daily gas loss {self.daily_gas_loss_wei / 10**18:.4f} reached"
            if len(self._trades) >= self.settings.max_trades_per_hour:
                return False, f"{len(self._trades)} trades in the last hour"
            if network_gas_price > self.settings.max_gas_price_wei:
                return False, f"gas price {network_gas_price / 10**9:.1f} gwei above cap"
            return True, ""

    def record(self, record: ExecutionRecord):
        with self._lock:
            now = self._clock()
            self._roll_day()
            if record.tx_hash is not None:
                self._trades.append(now)

            if record.outcome == Outcome.SUCCEEDED:
                self.consecutive_failures = 0
                return
            if record.outcome == Outcome.ABORTED:
                return

            self.consecutive_failures += 1
            self.daily_gas_loss_wei += record.gas_cost_wei
            if self.consecutive_failures >= self.settings.max_consecutive_failures:
                self.paused_until = now + self.settings.failure_cooldown
                self.consecutive_failures = 0
                logger.error(
                    f"Too many consecutive failures ({self.settings.max_consecutive_failures}). "
                    f"Pausing execution for {self.settings.failure_cooldown:.0f}s"
                )

    def status(self) -> dict:
        with self._lock:
            now = self._clock()
            self._prune(now)
            return {
                "consecutive_failures": self.consecutive_failures,
                "paused": now < self.paused_until,
                "daily_gas_loss_wei": self.daily_gas_loss_wei,
                "trades_last_hour": len(self._trades),
            }
