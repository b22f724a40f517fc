"""Background confirmation of mobile-money charges.

Every monitored checkout gets its own :class:`MonitorContext` with a private
cancellation event, a deadline timer and a polling thread. Exactly one of the
success, failure or timeout callbacks fires per context; explicit cancellation
fires none of them.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..settings import MonitorSettings
from .errors import DuplicateCallbackError
from .payment_gateway import ChargeStatus, MobileMoneyGateway

LOGGER = logging.getLogger(__name__)


@dataclass
class MonitorCallbacks:
    on_success: Callable[[ChargeStatus], None]
    on_failure: Callable[[ChargeStatus], None]
    on_timeout: Callable[[], None]


class MonitorOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class MonitorContext:
    """Polling state for a single checkout."""

    def __init__(
        self,
        payment_id: str,
        checkout_request_id: str,
        gateway: MobileMoneyGateway,
        callbacks: MonitorCallbacks,
        *,
        timeout: float,
        initial_delay: float,
        poll_interval: float,
        max_attempts: int,
        on_finished: Optional[Callable[["MonitorContext"], None]] = None,
    ) -> None:
        self.payment_id = payment_id
        self.checkout_request_id = checkout_request_id
        self.gateway = gateway
        self.callbacks = callbacks
        self.timeout = timeout
        self.initial_delay = initial_delay
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.attempts = 0

        self._on_finished = on_finished
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._finished = threading.Event()
        self._outcome: Optional[MonitorOutcome] = None
        self._deadline = threading.Timer(timeout, self._handle_deadline)
        self._deadline.daemon = True
        self._worker = threading.Thread(
            target=self._poll_loop,
            name=f"payment-monitor-{payment_id}",
            daemon=True,
        )

    @property
    def outcome(self) -> Optional[MonitorOutcome]:
        return self._outcome

    @property
    def is_finished(self) -> bool:
        return self._outcome is not None

    def start(self) -> None:
        self._deadline.start()
        self._worker.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context reaches a terminal outcome."""
        return self._finished.wait(timeout)

    def stop(self) -> bool:
        """Cancel polling without firing a callback.

        Returns ``False`` when the context had already finished.
        """
        try:
            self._claim(MonitorOutcome.CANCELLED)
        except DuplicateCallbackError:
            return False
        LOGGER.info("Stopped monitoring payment %s", self.payment_id)
        self._complete()
        return True

    def resolve(self, status: ChargeStatus) -> bool:
        """Apply a status pushed by the gateway webhook.

        Pending results are ignored; terminal results finish the context the
        same way a poll would.
        """
        if status.is_completed:
            return self._finish(MonitorOutcome.SUCCESS, status)
        if status.is_failed:
            return self._finish(MonitorOutcome.FAILURE, status)
        return False

    def _claim(self, outcome: MonitorOutcome) -> None:
        with self._lock:
            if self._outcome is not None:
                raise DuplicateCallbackError(
                    f"Payment {self.payment_id} already finished with {self._outcome.value}"
                )
            self._outcome = outcome
            self._cancelled.set()
        self._deadline.cancel()

    def _complete(self) -> None:
        self._finished.set()
        if self._on_finished is not None:
            self._on_finished(self)

    def _finish(self, outcome: MonitorOutcome, status: ChargeStatus | None = None) -> bool:
        try:
            self._claim(outcome)
        except DuplicateCallbackError as exc:
            LOGGER.debug("Ignoring duplicate outcome %s: %s", outcome.value, exc)
            return False

        LOGGER.info(
            "Payment %s finished with %s after %s attempt(s)",
            self.payment_id,
            outcome.value,
            self.attempts,
        )
        try:
            if outcome is MonitorOutcome.SUCCESS:
                self.callbacks.on_success(status)
            elif outcome is MonitorOutcome.FAILURE:
                self.callbacks.on_failure(status)
            else:
                self.callbacks.on_timeout()
        except Exception:
            LOGGER.exception("Callback for payment %s raised", self.payment_id)
        finally:
            self._complete()
        return True

    def _handle_deadline(self) -> None:
        self._finish(MonitorOutcome.TIMEOUT)

    def _next_attempt(self) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self.attempts += 1
            return True

    def _poll_loop(self) -> None:
        if self._cancelled.wait(self.initial_delay):
            return

        while self._next_attempt():
            try:
                status: ChargeStatus | None = self.gateway.get_status(self.checkout_request_id)
            except Exception as exc:
                LOGGER.warning(
                    "Status poll %s/%s for payment %s failed: %s",
                    self.attempts,
                    self.max_attempts,
                    self.payment_id,
                    exc,
                )
                status = None

            if self._cancelled.is_set():
                return
            if status is not None and status.is_completed:
                self._finish(MonitorOutcome.SUCCESS, status)
                return
            if status is not None and status.is_failed:
                self._finish(MonitorOutcome.FAILURE, status)
                return
            if self.attempts >= self.max_attempts:
                LOGGER.warning(
                    "Payment %s still pending after %s attempts", self.payment_id, self.attempts
                )
                self._finish(MonitorOutcome.TIMEOUT)
                return
            if self._cancelled.wait(self.poll_interval):
                return


class PaymentStatusMonitor:
    """Registry of in-flight checkout monitors keyed by payment id."""

    def __init__(
        self,
        gateway: MobileMoneyGateway,
        *,
        settings: MonitorSettings | None = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or MonitorSettings.from_env()
        self._lock = threading.Lock()
        self._contexts: Dict[str, MonitorContext] = {}

    def start_monitoring(
        self,
        payment_id: str,
        checkout_request_id: str,
        callbacks: MonitorCallbacks,
        timeout: float | None = None,
    ) -> MonitorContext:
        """Start polling ``checkout_request_id`` in the background.

        Returns the running context. Starting an already monitored payment
        returns the existing context instead of spawning a second poller.
        """
        if not payment_id:
            raise ValueError("payment_id is required")
        if not checkout_request_id:
            raise ValueError("checkout_request_id is required")
        effective_timeout = self.settings.timeout if timeout is None else timeout
        if effective_timeout <= 0:
            raise ValueError("timeout must be positive")

        with self._lock:
            existing = self._contexts.get(payment_id)
            if existing is not None and not existing.is_finished:
                return existing
            context = MonitorContext(
                payment_id,
                checkout_request_id,
                self.gateway,
                callbacks,
                timeout=effective_timeout,
                initial_delay=self.settings.initial_delay,
                poll_interval=self.settings.poll_interval,
                max_attempts=self.settings.max_attempts,
                on_finished=self._forget,
            )
            self._contexts[payment_id] = context

        LOGGER.info(
            "Monitoring payment %s (checkout %s) for up to %.0f seconds",
            payment_id,
            checkout_request_id,
            effective_timeout,
        )
        context.start()
        return context

    def stop_monitoring(self, payment_id: str) -> bool:
        with self._lock:
            context = self._contexts.get(payment_id)
        if context is None:
            return False
        return context.stop()

    def notify_result(self, checkout_request_id: str, status: ChargeStatus) -> bool:
        """Finish the monitor for ``checkout_request_id`` with a webhook result.

        Unknown or already finished checkouts are a silent no-op.
        """
        with self._lock:
            context = next(
                (
                    item
                    for item in self._contexts.values()
                    if item.checkout_request_id == checkout_request_id
                ),
                None,
            )
        if context is None:
            return False
        return context.resolve(status)

    def is_monitoring(self, payment_id: str) -> bool:
        with self._lock:
            return payment_id in self._contexts

    def active_payments(self) -> list[str]:
        with self._lock:
            return sorted(self._contexts)

    def stop_all(self) -> None:
        with self._lock:
            contexts = list(self._contexts.values())
        for context in contexts:
            context.stop()

    def _forget(self, context: MonitorContext) -> None:
        with self._lock:
            if self._contexts.get(context.payment_id) is context:
                del self._contexts[context.payment_id]
