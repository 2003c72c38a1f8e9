"""Central transition tables for settlement status fields.

All status writes on transactions, payments and payouts go through
``transition``. Writing the current status again is a no-op; anything not
listed in the table raises InvalidStateTransitionError.
"""

import logging
from typing import Any

from app.core.errors import InvalidStateTransitionError
from app.models.payment import Payment, PaymentStatus
from app.models.payout import Payout, PayoutStatus
from app.models.transaction import Transaction, TransactionStatus

logger = logging.getLogger(__name__)

T = TransactionStatus
P = PaymentStatus
PO = PayoutStatus

TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    T.PENDING: frozenset({T.PAYMENT_PROCESSING, T.CANCELLED}),
    T.PAYMENT_PROCESSING: frozenset({T.PAYMENT_COMPLETED, T.UNDER_REVIEW, T.CANCELLED}),
    T.UNDER_REVIEW: frozenset({T.PAYMENT_COMPLETED, T.CANCELLED}),
    T.PAYMENT_COMPLETED: frozenset(
        {T.ACTIVE, T.COMPLETED, T.PAYOUT_COMPLETED, T.REFUNDED, T.DISPUTED}
    ),
    T.ACTIVE: frozenset({T.COMPLETED, T.REFUNDED, T.DISPUTED}),
    T.COMPLETED: frozenset({T.PAYOUT_COMPLETED, T.REFUNDED, T.DISPUTED}),
    T.DISPUTED: frozenset({T.PAYMENT_COMPLETED, T.COMPLETED, T.REFUNDED}),
    T.PAYOUT_COMPLETED: frozenset(),
    T.CANCELLED: frozenset(),
    T.REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    P.PENDING: frozenset({P.PROCESSING, P.COMPLETED, P.FAILED, P.UNDER_REVIEW, P.CANCELLED}),
    P.PROCESSING: frozenset({P.COMPLETED, P.FAILED}),
    P.UNDER_REVIEW: frozenset({P.COMPLETED, P.FAILED}),
    P.COMPLETED: frozenset({P.PARTIALLY_REFUNDED, P.REFUNDED}),
    P.PARTIALLY_REFUNDED: frozenset({P.PARTIALLY_REFUNDED, P.REFUNDED}),
    P.FAILED: frozenset(),
    P.CANCELLED: frozenset(),
    P.REFUNDED: frozenset(),
}

PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PO.PENDING: frozenset({PO.PROCESSING, PO.CANCELLED, PO.ON_HOLD}),
    PO.SCHEDULED: frozenset({PO.PROCESSING, PO.CANCELLED, PO.ON_HOLD}),
    PO.ON_HOLD: frozenset({PO.PROCESSING, PO.CANCELLED}),
    PO.PROCESSING: frozenset({PO.COMPLETED, PO.FAILED}),
    PO.COMPLETED: frozenset(),
    PO.FAILED: frozenset(),
    PO.CANCELLED: frozenset(),
}

_TABLES: dict[type, tuple[type, dict[Any, frozenset[Any]]]] = {
    Transaction: (TransactionStatus, TRANSACTION_TRANSITIONS),
    Payment: (PaymentStatus, PAYMENT_TRANSITIONS),
    Payout: (PayoutStatus, PAYOUT_TRANSITIONS),
}


def can_transition(entity: Transaction | Payment | Payout, target: Any) -> bool:
    """Whether ``entity`` may move to ``target``."""
    status_enum, table = _TABLES[type(entity)]
    current = status_enum(entity.status)
    target = status_enum(target)
    return current == target or target in table[current]


def transition(entity: Transaction | Payment | Payout, target: Any) -> None:
    """Set ``entity.status`` to ``target`` if the transition table allows it."""
    status_enum, table = _TABLES[type(entity)]
    current = status_enum(entity.status)
    target = status_enum(target)
    if current == target:
        return
    if target not in table[current]:
        raise InvalidStateTransitionError(type(entity).__name__, current.value, target.value)
    logger.debug(
        "%s %s: %s -> %s", type(entity).__name__, entity.id, current.value, target.value
    )
    entity.status = target.value
