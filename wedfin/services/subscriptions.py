"""ライブクエリの購読管理

Firestore の on_snapshot は変更のたびにバックグラウンドスレッドから呼ばれる。
ここでは以下を提供する。

- Debouncer: 短時間に連続する変更通知を1回の処理にまとめる
- SupervisedSubscription: 1つのライブクエリを状態付きで監視し、
  処理に失敗した場合は指数バックオフで再購読する
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from wedfin.domain.ports import Unsubscribe

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]

DEFAULT_DEBOUNCE_SECONDS = 0.3


class Debouncer:
    """trigger() が delay 秒間呼ばれなくなった時点で action を1回実行する"""

    def __init__(
        self,
        delay: float,
        action: Callable[[], None],
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._delay = delay
        self._action = action
        self._timer_factory = timer_factory
        self._timer: threading.Timer | None = None
        self._closed = False
        self._lock = threading.Lock()

    def trigger(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._closed:
                return
        self._action()

    def cancel(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class SubscriptionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class BackoffPolicy:
    """再購読までの待ち時間（1, 2, 4, ... 秒、上限 max_delay）"""

    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """attempt 回目（1始まり）の失敗後の待ち時間"""
        return min(
            self.initial_delay * self.multiplier ** max(attempt - 1, 0),
            self.max_delay,
        )


class SupervisedSubscription:
    """
    1つのライブクエリを監視する。

    状態遷移:
      CONNECTING → CONNECTED
      CONNECTED → RECONNECTING（購読または変更処理の失敗）→ CONNECTED
      RECONNECTING → FAILED（連続失敗が max_attempts に到達）
      * → CLOSED（close()）

    変更処理が成功すると連続失敗数は 0 に戻る。
    """

    def __init__(
        self,
        name: str,
        subscribe: Callable[[Callable[[], None]], Unsubscribe],
        on_change: Callable[[], None],
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        backoff: BackoffPolicy | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        """
        Args:
            name: ログ用の識別名（例: "expenses:ws-1"）
            subscribe: 変更通知コールバックを受け取り、購読解除関数を返す
            on_change: デバウンス後に呼ばれる処理
        """
        self._name = name
        self._subscribe = subscribe
        self._on_change = on_change
        self._backoff = backoff or BackoffPolicy()
        self._timer_factory = timer_factory
        self._debouncer = Debouncer(debounce_seconds, self._deliver, timer_factory)
        self._unsubscribe: Unsubscribe | None = None
        self._retry_timer: threading.Timer | None = None
        self._failures = 0
        self._state = SubscriptionState.CONNECTING
        self._lock = threading.Lock()

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def start(self) -> None:
        self._connect()

    def close(self) -> None:
        with self._lock:
            self._state = SubscriptionState.CLOSED
            if self._retry_timer is not None:
                self._retry_timer.cancel()
                self._retry_timer = None
        self._debouncer.cancel()
        self._detach()
        logger.info("Subscription closed: %s", self._name)

    def _connect(self) -> None:
        if self._state is SubscriptionState.CLOSED:
            return
        try:
            unsubscribe = self._subscribe(self._debouncer.trigger)
        except Exception:
            logger.exception("Subscribe failed: %s", self._name)
            self._handle_failure()
            return
        with self._lock:
            if self._state is SubscriptionState.CLOSED:
                unsubscribe()
                return
            self._unsubscribe = unsubscribe
            self._state = SubscriptionState.CONNECTED
        logger.debug("Subscription connected: %s", self._name)

    def _deliver(self) -> None:
        if self._state is not SubscriptionState.CONNECTED:
            return
        try:
            self._on_change()
        except Exception:
            logger.exception("Snapshot processing failed: %s", self._name)
            self._handle_failure()
            return
        self._failures = 0

    def _detach(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is None:
            return
        try:
            unsubscribe()
        except Exception:
            logger.warning("Unsubscribe failed: %s", self._name, exc_info=True)

    def _handle_failure(self) -> None:
        self._detach()
        with self._lock:
            if self._state is SubscriptionState.CLOSED:
                return
            self._failures += 1
            if self._failures >= self._backoff.max_attempts:
                self._state = SubscriptionState.FAILED
                logger.error(
                    "Subscription failed permanently: %s, failures=%d",
                    self._name,
                    self._failures,
                )
                return
            self._state = SubscriptionState.RECONNECTING
            delay = self._backoff.delay_for(self._failures)
            self._retry_timer = self._timer_factory(delay, self._connect)
            self._retry_timer.daemon = True
            self._retry_timer.start()
        logger.warning(
            "Subscription reconnecting: %s, attempt=%d, delay=%.1fs",
            self._name,
            self._failures,
            delay,
        )
