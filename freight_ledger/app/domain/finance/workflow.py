"""
Settlement workflow transitions.

Each settlement kind has a closed transition table mapping
(current status, action) -> next status. Anything not in the table is
rejected; paid settlements are final.
"""

import enum
from typing import Dict, Tuple

from freight_ledger.app.core.exceptions import InvalidStateTransitionError, ImmutableRecordError
from freight_ledger.app.models.finance_enums import BranchSettlementStatus, MerchantSettlementStatus


class SettlementAction(str, enum.Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    PAY = "pay"
    CANCEL = "cancel"


BRANCH_TRANSITIONS: Dict[Tuple[BranchSettlementStatus, SettlementAction], BranchSettlementStatus] = {
    (BranchSettlementStatus.DRAFT, SettlementAction.SUBMIT): BranchSettlementStatus.SUBMITTED,
    (BranchSettlementStatus.DRAFT, SettlementAction.CANCEL): BranchSettlementStatus.CANCELLED,
    (BranchSettlementStatus.SUBMITTED, SettlementAction.APPROVE): BranchSettlementStatus.APPROVED,
    (BranchSettlementStatus.APPROVED, SettlementAction.PAY): BranchSettlementStatus.PAID,
}

MERCHANT_TRANSITIONS: Dict[Tuple[MerchantSettlementStatus, SettlementAction], MerchantSettlementStatus] = {
    (MerchantSettlementStatus.DRAFT, SettlementAction.SUBMIT): MerchantSettlementStatus.PENDING_APPROVAL,
    (MerchantSettlementStatus.PENDING_APPROVAL, SettlementAction.APPROVE): MerchantSettlementStatus.APPROVED,
    (MerchantSettlementStatus.APPROVED, SettlementAction.PAY): MerchantSettlementStatus.PAID,
}


def next_status(transitions: dict, entity: str, entity_id, current, action: SettlementAction):
    """Return the status reached by applying action, or raise."""
    if current.value == "paid":
        raise ImmutableRecordError(entity, entity_id)

    target = transitions.get((current, SettlementAction(action)))
    if target is None:
        raise InvalidStateTransitionError(entity, current.value, SettlementAction(action).value)
    return target
