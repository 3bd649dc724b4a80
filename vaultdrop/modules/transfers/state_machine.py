"""
Transfer lifecycle.

    offered --INVOICE--> invoiced --PAY--> paid --GRANT--> delivered --ACKNOWLEDGE--> acknowledged
                             |                                 ^  |
                             +-------GRANT_UNPAID--------------+  +--GRANT (re-issue)

    paid | delivered | acknowledged --DISPUTE--> disputed
    delivered | acknowledged       --REVOKE-->  refunded

Every status change goes through `transition`; anything not in the table is InvalidState.
"""
import enum
import logging
from typing import Dict, FrozenSet, Tuple

from vaultdrop.core.errors import InvalidState
from vaultdrop.modules.transfers.models import Transfer, TransferStatus

logger = logging.getLogger(__name__)

class TransferEvent(str, enum.Enum):
    INVOICE = "invoice"
    PAY = "pay"
    GRANT = "grant"
    GRANT_UNPAID = "grant_unpaid"
    ACKNOWLEDGE = "acknowledge"
    DISPUTE = "dispute"
    REVOKE = "revoke"

S = TransferStatus

TRANSITIONS: Dict[TransferEvent, Tuple[FrozenSet[TransferStatus], TransferStatus]] = {
    TransferEvent.INVOICE: (frozenset({S.OFFERED, S.INVOICED}), S.INVOICED),
    TransferEvent.PAY: (frozenset({S.INVOICED}), S.PAID),
    TransferEvent.GRANT: (frozenset({S.PAID, S.DELIVERED}), S.DELIVERED),
    # Only attempted for free products or when ALLOW_UNPAID_GRANT is set
    TransferEvent.GRANT_UNPAID: (frozenset({S.INVOICED}), S.DELIVERED),
    TransferEvent.ACKNOWLEDGE: (frozenset({S.DELIVERED}), S.ACKNOWLEDGED),
    TransferEvent.DISPUTE: (frozenset({S.PAID, S.DELIVERED, S.ACKNOWLEDGED}), S.DISPUTED),
    TransferEvent.REVOKE: (frozenset({S.DELIVERED, S.ACKNOWLEDGED}), S.REFUNDED),
}

TERMINAL_STATUSES = frozenset({S.DISPUTED, S.REFUNDED})

# A pair (product, recipient) with a transfer in one of these cannot receive a new offer
ACTIVE_STATUSES = frozenset({S.OFFERED, S.INVOICED, S.PAID, S.DELIVERED})

# Statuses under which the recipient may read manifest and chunks
ENTITLED_STATUSES = frozenset({S.PAID, S.DELIVERED, S.ACKNOWLEDGED})

def allowed_sources(event: TransferEvent) -> FrozenSet[TransferStatus]:
    return TRANSITIONS[event][0]

def can_apply(status: TransferStatus, event: TransferEvent) -> bool:
    return TransferStatus(status) in TRANSITIONS[event][0]

def target_of(event: TransferEvent) -> TransferStatus:
    return TRANSITIONS[event][1]

def require(transfer: Transfer, event: TransferEvent) -> TransferStatus:
    """Raise InvalidState unless `event` may be applied to the transfer's current status."""
    sources = TRANSITIONS[event][0]
    current = TransferStatus(transfer.status)
    if current not in sources:
        expected = ", ".join(sorted(s.value for s in sources))
        raise InvalidState(
            f"Cannot {event.value} a transfer in status {current.value} (expected one of: {expected})",
            status=current.value,
        )
    return current

def transition(transfer: Transfer, event: TransferEvent) -> TransferStatus:
    """
    Apply `event` to the transfer in memory. Returns the previous status.
    The caller owns the commit.
    """
    current = require(transfer, event)
    target = TRANSITIONS[event][1]
    transfer.status = target
    logger.info(f"[Transfers] {transfer.id}: {current.value} -> {target.value} ({event.value})")
    return current
