from __future__ import annotations

import threading
import time

import pytest

from backend.netpulse.services.errors import GatewayTransientError
from backend.netpulse.services.payment_gateway import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    ChargeStatus,
)
from backend.netpulse.services.payment_monitor import (
    MonitorCallbacks,
    MonitorOutcome,
    PaymentStatusMonitor,
)
from backend.netpulse.settings import MonitorSettings

COMPLETED = ChargeStatus(status=STATUS_COMPLETED, success=True, receipt_number="QKL1X2Y3Z4")
FAILED = ChargeStatus(status=STATUS_FAILED, message="Request cancelled by user")
PENDING = ChargeStatus(status=STATUS_PENDING)


class RecordingCallbacks:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self._lock = threading.Lock()

    def _record(self, name: str, value: object = None) -> None:
        with self._lock:
            self.calls.append((name, value))

    def build(self) -> MonitorCallbacks:
        return MonitorCallbacks(
            on_success=lambda status: self._record("success", status),
            on_failure=lambda status: self._record("failure", status),
            on_timeout=lambda: self._record("timeout"),
        )


def _monitor(gateway, **overrides) -> PaymentStatusMonitor:
    values = {"initial_delay": 0.0, "poll_interval": 0.01, "max_attempts": 20, "timeout": 2.0}
    values.update(overrides)
    return PaymentStatusMonitor(gateway, settings=MonitorSettings(**values))


def test_success_fires_once_and_stops_polling(gateway_factory):
    gateway = gateway_factory([PENDING, PENDING, COMPLETED])
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway)

    context = monitor.start_monitoring("pay-1", "ws_CO_1", callbacks.build())

    assert context.wait(2)
    assert context.outcome is MonitorOutcome.SUCCESS
    assert callbacks.calls == [("success", COMPLETED)]
    assert context.attempts == 3
    polls = len(gateway.polls)
    time.sleep(0.05)
    assert len(gateway.polls) == polls
    assert monitor.is_monitoring("pay-1") is False


def test_failed_status_fires_failure_callback(gateway_factory):
    gateway = gateway_factory([FAILED])
    callbacks = RecordingCallbacks()

    context = _monitor(gateway).start_monitoring("pay-2", "ws_CO_2", callbacks.build())

    assert context.wait(2)
    assert callbacks.calls == [("failure", FAILED)]


def test_completed_without_success_flag_keeps_polling(gateway_factory):
    not_confirmed = ChargeStatus(status=STATUS_COMPLETED, success=False)
    gateway = gateway_factory([not_confirmed, COMPLETED])
    callbacks = RecordingCallbacks()

    context = _monitor(gateway).start_monitoring("pay-3", "ws_CO_3", callbacks.build())

    assert context.wait(2)
    assert context.attempts == 2
    assert [name for name, _ in callbacks.calls] == ["success"]


def test_poll_errors_count_towards_attempt_limit_and_time_out(gateway_factory):
    gateway = gateway_factory([GatewayTransientError("gateway down")])
    callbacks = RecordingCallbacks()

    context = _monitor(gateway, max_attempts=3).start_monitoring(
        "pay-4", "ws_CO_4", callbacks.build()
    )

    assert context.wait(2)
    assert context.outcome is MonitorOutcome.TIMEOUT
    assert context.attempts == 3
    assert callbacks.calls == [("timeout", None)]


def test_hard_deadline_fires_timeout_even_with_attempts_left(gateway_factory):
    gateway = gateway_factory([PENDING])
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway, poll_interval=0.05, max_attempts=1000)

    context = monitor.start_monitoring("pay-5", "ws_CO_5", callbacks.build(), timeout=0.2)

    assert context.wait(2)
    assert context.outcome is MonitorOutcome.TIMEOUT
    assert callbacks.calls == [("timeout", None)]
    assert context.attempts < 1000


def test_stop_monitoring_fires_no_callback(gateway_factory):
    gateway = gateway_factory([PENDING])
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway, initial_delay=0.05, poll_interval=0.05)

    monitor.start_monitoring("pay-6", "ws_CO_6", callbacks.build())

    assert monitor.stop_monitoring("pay-6") is True
    time.sleep(0.2)
    assert callbacks.calls == []
    assert monitor.stop_monitoring("pay-6") is False


def test_webhook_result_finishes_monitor_and_duplicates_are_ignored(gateway_factory):
    gateway = gateway_factory([PENDING])
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway, initial_delay=1.0)

    context = monitor.start_monitoring("pay-7", "ws_CO_7", callbacks.build())

    assert monitor.notify_result("ws_CO_7", COMPLETED) is True
    assert context.wait(1)
    assert monitor.notify_result("ws_CO_7", FAILED) is False
    assert context.resolve(FAILED) is False
    assert callbacks.calls == [("success", COMPLETED)]
    assert gateway.polls == []


def test_pending_webhook_result_is_ignored(gateway_factory):
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway_factory([PENDING]), initial_delay=1.0)
    context = monitor.start_monitoring("pay-8", "ws_CO_8", callbacks.build())

    assert monitor.notify_result("ws_CO_8", PENDING) is False
    assert context.is_finished is False
    monitor.stop_all()


def test_starting_an_active_payment_returns_existing_context(gateway_factory):
    monitor = _monitor(gateway_factory([PENDING]), initial_delay=1.0)
    callbacks = RecordingCallbacks().build()

    first = monitor.start_monitoring("pay-9", "ws_CO_9", callbacks)
    second = monitor.start_monitoring("pay-9", "ws_CO_9", callbacks)

    assert first is second
    assert monitor.active_payments() == ["pay-9"]
    monitor.stop_all()


def test_callback_exceptions_do_not_break_the_monitor(gateway_factory):
    def _explode(_status):
        raise RuntimeError("callback failed")

    callbacks = MonitorCallbacks(on_success=_explode, on_failure=_explode, on_timeout=lambda: None)
    monitor = _monitor(gateway_factory([COMPLETED]))
    context = monitor.start_monitoring("pay-10", "ws_CO_10", callbacks)

    assert context.wait(2)
    assert context.outcome is MonitorOutcome.SUCCESS


def test_racing_terminal_outcomes_fire_exactly_one_callback(gateway_factory):
    callbacks = RecordingCallbacks()
    monitor = _monitor(gateway_factory([PENDING]), initial_delay=1.0)
    context = monitor.start_monitoring("pay-11", "ws_CO_11", callbacks.build())

    barrier = threading.Barrier(4)

    def _resolve(status):
        barrier.wait()
        context.resolve(status)

    threads = [
        threading.Thread(target=_resolve, args=(status,))
        for status in (COMPLETED, FAILED, COMPLETED, FAILED)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert context.wait(1)
    assert len(callbacks.calls) == 1


@pytest.mark.parametrize(
    "payment_id, checkout_request_id, timeout",
    [("", "ws_CO", None), ("pay", "", None), ("pay", "ws_CO", 0)],
)
def test_start_monitoring_rejects_invalid_arguments(
    payment_id, checkout_request_id, timeout, gateway_factory
):
    monitor = _monitor(gateway_factory())

    with pytest.raises(ValueError):
        monitor.start_monitoring(
            payment_id, checkout_request_id, RecordingCallbacks().build(), timeout=timeout
        )
