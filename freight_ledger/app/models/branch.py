"""
Branch database model.

Only the fields the finance core reads; branch provisioning lives elsewhere.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base


class Branch(Base):
    """
    Branch model.

    A branch originates shipments and settles with HQ periodically.
    The row doubles as the lock target when generating branch settlements.
    """
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    code = Column(String(20), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Branch(id={self.id}, code='{self.code}')>"
