from __future__ import annotations

import pytest

from gate import ConfirmationGate, GateClosed, GateState


def test_confirm_by_initiator(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)
    assert gate.state is GateState.IDLE

    gate.open()
    assert gate.state is GateState.AWAITING
    assert gate.confirm("100")
    assert gate.state is GateState.CONFIRMED


def test_signals_from_other_users_are_ignored(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)
    gate.open()

    assert not gate.confirm("200")
    assert not gate.cancel("200")
    assert gate.state is GateState.AWAITING

    assert gate.cancel("100")
    assert gate.state is GateState.CANCELLED


def test_times_out_without_signal(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)
    gate.open()

    clock.advance(14.9)
    assert gate.state is GateState.AWAITING
    assert gate.remaining() == pytest.approx(0.1)

    clock.advance(0.1)
    assert gate.state is GateState.TIMED_OUT
    assert gate.remaining() == 0.0


def test_late_confirmation_does_not_count(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)
    gate.open()
    clock.advance(20)

    assert not gate.confirm("100")
    assert gate.state is GateState.TIMED_OUT


def test_terminal_states_are_final(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)
    gate.open()
    gate.cancel("100")

    assert not gate.confirm("100")
    assert gate.state is GateState.CANCELLED
    with pytest.raises(GateClosed):
        gate.open()


def test_signals_before_open_are_ignored(clock):
    gate = ConfirmationGate("100", timeout=15, clock=clock)

    assert not gate.confirm("100")
    assert gate.state is GateState.IDLE


def test_timeout_must_be_positive(clock):
    with pytest.raises(ValueError):
        ConfirmationGate("100", timeout=0, clock=clock)
