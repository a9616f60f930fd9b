"""
Donation submission model.
"""
from sqlalchemy import CheckConstraint, Column, Date, DateTime, Numeric, String
from datetime import datetime
from app.donations.database import Base

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


class DonationModel(Base):
    """One row per public form submission."""
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
    )

    id = Column(String, primary_key=True)

    # Donor
    title = Column(String, nullable=False)  # นาย, นาง, นางสาว, ...
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    birth_date = Column(Date, nullable=False)

    # Payment
    amount = Column(Numeric(12, 2), nullable=False)  # baht
    receipt_url = Column(String)  # proof-of-payment image, never changed after insert

    # Workflow
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    pdf_url = Column(String)  # set iff status == approved

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def receipt_number(self) -> str:
        return self.id[:8].upper()

    @property
    def full_name(self) -> str:
        return f"{self.title}{self.first_name} {self.last_name}"
