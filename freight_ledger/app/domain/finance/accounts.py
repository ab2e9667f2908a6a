"""
Chart of accounts.

Static lookup of the ledger accounts the posting engine writes to.
"""

import logging
from typing import NamedTuple, Dict

logger = logging.getLogger(__name__)


class LedgerAccount(NamedTuple):
    code: str
    name: str
    kind: str  # asset | liability | revenue


CASH = LedgerAccount("1000", "Cash", "asset")
BANK = LedgerAccount("1010", "Bank", "asset")
ACCOUNTS_RECEIVABLE = LedgerAccount("1100", "Accounts Receivable", "asset")
TAX_PAYABLE = LedgerAccount("2100", "Tax Payable", "liability")
MERCHANT_COD_PAYABLE = LedgerAccount("2200", "Merchant COD Payable", "liability")
FREIGHT_REVENUE = LedgerAccount("4000", "Freight Revenue", "revenue")
SURCHARGE_REVENUE = LedgerAccount("4010", "Surcharge Revenue", "revenue")
INSURANCE_REVENUE = LedgerAccount("4020", "Insurance Revenue", "revenue")

CHART_OF_ACCOUNTS: Dict[str, LedgerAccount] = {
    account.code: account
    for account in (
        CASH,
        BANK,
        ACCOUNTS_RECEIVABLE,
        TAX_PAYABLE,
        MERCHANT_COD_PAYABLE,
        FREIGHT_REVENUE,
        SURCHARGE_REVENUE,
        INSURANCE_REVENUE,
    )
}

# Payment method -> account debited when the money comes in
PAYMENT_METHOD_ACCOUNTS: Dict[str, LedgerAccount] = {
    "cash": CASH,
    "cod": CASH,
    "card": BANK,
    "credit_card": BANK,
    "debit_card": BANK,
    "mobile": BANK,
    "mobile_money": BANK,
    "bank": BANK,
    "bank_transfer": BANK,
    "on_account": ACCOUNTS_RECEIVABLE,
    "credit": ACCOUNTS_RECEIVABLE,
    "cheque": ACCOUNTS_RECEIVABLE,
}


def get_account(code: str) -> LedgerAccount:
    try:
        return CHART_OF_ACCOUNTS[code]
    except KeyError:
        raise KeyError(f"Unknown ledger account code: {code}") from None


def account_for_payment_method(method: str) -> LedgerAccount:
    """
    Resolve the cash-side account for a payment method.

    Unknown methods fall back to Cash rather than failing the posting.
    """
    key = (method or "").strip().lower().replace("-", "_").replace(" ", "_")
    account = PAYMENT_METHOD_ACCOUNTS.get(key)
    if account is None:
        logger.warning("Unknown payment method %r, posting to Cash", method)
        return CASH
    return account
