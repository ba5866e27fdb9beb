"""
gate.py
───────
Time-boxed approval for a restore.

    IDLE ──open()──▶ AWAITING ──confirm(initiator)──▶ CONFIRMED
                        │    ──cancel(initiator)───▶ CANCELLED
                        └────── window elapsed ────▶ TIMED_OUT

Signals from anyone other than the initiator are ignored. Terminal states
are final; a gate is used for exactly one request.
"""

from __future__ import annotations
import logging
from enum import Enum

from clock import SYSTEM_CLOCK

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class GateState(Enum):
    IDLE = "idle"
    AWAITING = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({GateState.CONFIRMED, GateState.CANCELLED, GateState.TIMED_OUT})


class GateClosed(RuntimeError):
    pass


class ConfirmationGate:
    def __init__(self, initiator_id: str, timeout: float = DEFAULT_TIMEOUT, clock=SYSTEM_CLOCK):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.initiator_id = initiator_id
        self.timeout = timeout
        self.clock = clock
        self._state = GateState.IDLE
        self._deadline: float | None = None

    @property
    def state(self) -> GateState:
        if (
            self._state is GateState.AWAITING
            and self.clock.monotonic() >= self._deadline
        ):
            logger.info("Confirmation for %s timed out", self.initiator_id)
            self._state = GateState.TIMED_OUT
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def remaining(self) -> float:
        if self.state is not GateState.AWAITING:
            return 0.0
        return max(0.0, self._deadline - self.clock.monotonic())

    def open(self) -> None:
        if self._state is not GateState.IDLE:
            raise GateClosed(f"gate already used (state: {self._state.value})")
        self._deadline = self.clock.monotonic() + self.timeout
        self._state = GateState.AWAITING

    def confirm(self, user_id: str) -> bool:
        """Return True if this signal moved the gate to CONFIRMED."""
        return self._signal(user_id, GateState.CONFIRMED)

    def cancel(self, user_id: str) -> bool:
        """Return True if this signal moved the gate to CANCELLED."""
        return self._signal(user_id, GateState.CANCELLED)

    def _signal(self, user_id: str, outcome: GateState) -> bool:
        if self.state is not GateState.AWAITING:
            return False
        if user_id != self.initiator_id:
            logger.debug("Ignoring %s from %s (initiator is %s)", outcome.value, user_id, self.initiator_id)
            return False
        self._state = outcome
        return True
