"""
Order State Machine
Explicit transition table: (current status, event) -> (new status, side effects).
Anything not in the table is rejected with InvalidTransition. OrderService
applies the plan; this module never touches the database.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Set, Tuple

from models import OrderStatus
from utils.exception_handler import InvalidTransition

logger = logging.getLogger(__name__)


class OrderEvent(Enum):
    """Business events that move an order"""

    CREATE = "create"                                  # None -> PENDING
    ACCEPT_WITH_HOLD = "accept_with_hold"              # PENDING -> ACCEPTED, hold from balance
    ACCEPT_AWAIT_PAYMENT = "accept_await_payment"      # PENDING -> PENDING_PAYMENT
    CONFIRM_EXTERNAL_PAYMENT = "confirm_external_payment"  # PENDING_PAYMENT -> ACCEPTED
    PAY_FROM_BALANCE = "pay_from_balance"              # PENDING_PAYMENT -> ACCEPTED, hold from balance
    START_SESSION = "start_session"                    # ACCEPTED -> IN_CALL
    COMPLETE = "complete"                              # ACCEPTED/IN_CALL -> COMPLETED
    CANCEL = "cancel"                                  # PENDING/PENDING_PAYMENT -> CANCELLED
    DECLINE = "decline"                                # PENDING -> CANCELLED (by requested provider)
    EXPIRE = "expire"                                  # PENDING -> CANCELLED (scheduler only)


class SideEffect(Enum):
    """Ledger and payment effects that must commit together with the status change"""

    HOLD_TOTAL = "hold_total"        # debit order total from the requester
    MARK_PAID = "mark_paid"          # external payment recorded, no ledger entry
    RELEASE_BASE = "release_base"    # credit base amount to the provider
    REFUND_HOLD = "refund_hold"      # return a held total to the requester, if one exists


@dataclass(frozen=True)
class TransitionPlan:
    event: OrderEvent
    from_status: Optional[str]
    to_status: str
    side_effects: Tuple[SideEffect, ...]


_P = OrderStatus.PENDING.value
_PP = OrderStatus.PENDING_PAYMENT.value
_A = OrderStatus.ACCEPTED.value
_IC = OrderStatus.IN_CALL.value
_C = OrderStatus.COMPLETED.value
_X = OrderStatus.CANCELLED.value


TRANSITION_TABLE: Dict[Tuple[Optional[str], OrderEvent], Tuple[str, Tuple[SideEffect, ...]]] = {
    (None, OrderEvent.CREATE): (_P, ()),
    (_P, OrderEvent.ACCEPT_WITH_HOLD): (_A, (SideEffect.HOLD_TOTAL,)),
    (_P, OrderEvent.ACCEPT_AWAIT_PAYMENT): (_PP, ()),
    (_PP, OrderEvent.CONFIRM_EXTERNAL_PAYMENT): (_A, (SideEffect.MARK_PAID,)),
    (_PP, OrderEvent.PAY_FROM_BALANCE): (_A, (SideEffect.HOLD_TOTAL,)),
    (_A, OrderEvent.START_SESSION): (_IC, ()),
    (_A, OrderEvent.COMPLETE): (_C, (SideEffect.RELEASE_BASE,)),
    (_IC, OrderEvent.COMPLETE): (_C, (SideEffect.RELEASE_BASE,)),
    (_P, OrderEvent.CANCEL): (_X, (SideEffect.REFUND_HOLD,)),
    (_PP, OrderEvent.CANCEL): (_X, (SideEffect.REFUND_HOLD,)),
    (_P, OrderEvent.DECLINE): (_X, (SideEffect.REFUND_HOLD,)),
    (_P, OrderEvent.EXPIRE): (_X, (SideEffect.REFUND_HOLD,)),
}

TERMINAL_STATES: Set[str] = {_C, _X}


def _build_status_graph() -> Dict[Optional[str], Set[str]]:
    graph: Dict[Optional[str], Set[str]] = {status.value: set() for status in OrderStatus}
    graph[None] = set()
    for (from_status, _event), (to_status, _effects) in TRANSITION_TABLE.items():
        graph[from_status].add(to_status)
    return graph


class OrderStateMachine:
    """Validates order transitions against the transition table"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = _build_status_graph()

    @classmethod
    def transition(cls, current_status: Optional[str], event: OrderEvent) -> TransitionPlan:
        """Plan a transition or raise InvalidTransition"""
        entry = TRANSITION_TABLE.get((current_status, event))
        if entry is None:
            logger.warning(f"🚫 ORDER_FSM: rejected {event.value} from {current_status}")
            raise InvalidTransition(
                f"Cannot {event.value.replace('_', ' ')} an order that is {current_status or 'new'}.",
                current_status=current_status,
                event=event.value,
            )
        to_status, effects = entry
        return TransitionPlan(event=event, from_status=current_status, to_status=to_status, side_effects=effects)

    @classmethod
    def source_states(cls, event: OrderEvent) -> Set[str]:
        """Statuses from which `event` is allowed - used to build compare-and-set conditions"""
        return {from_status for (from_status, ev) in TRANSITION_TABLE if ev is event and from_status is not None}

    @classmethod
    def is_valid_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def get_valid_transitions(cls, current_status: Optional[str]) -> Set[str]:
        return set(cls.VALID_TRANSITIONS.get(current_status, set()))

    @classmethod
    def is_terminal_state(cls, status: str) -> bool:
        return status in TERMINAL_STATES

    @classmethod
    def is_valid_path(cls, statuses: Iterable[str]) -> bool:
        """Check a visited status sequence (starting from creation) against the graph"""
        previous: Optional[str] = None
        for status in statuses:
            if not cls.is_valid_transition(previous, status):
                return False
            previous = status
        return True
