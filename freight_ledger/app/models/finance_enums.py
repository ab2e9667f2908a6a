"""
Finance enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry side."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class LedgerEntryStatus(str, enum.Enum):
    """Ledger entry sync status."""
    PENDING = "PENDING"  # Created, not yet synced to the external ledger
    POSTED = "POSTED"  # Synced; immutable from here on


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    SETTLEMENT_PAYOUT = "settlement_payout"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CustomerStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    BLACKLISTED = "blacklisted"


class ShipmentStatus(str, enum.Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentType(str, enum.Enum):
    """How a shipment is paid for."""
    COD = "cod"
    CREDIT = "credit"
    PREPAID = "prepaid"


class CodCollectionStatus(str, enum.Enum):
    """COD collection lifecycle: pending -> collected -> verified -> remitted."""
    PENDING = "pending"
    COLLECTED = "collected"
    VERIFIED = "verified"
    REMITTED = "remitted"


class BranchSettlementStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class MerchantSettlementStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PAID = "paid"


class RateSource(str, enum.Enum):
    MANUAL = "manual"
    FEED = "feed"
