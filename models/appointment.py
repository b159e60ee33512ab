import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import validates

from models.db import db


class PaymentStatus(str, enum.Enum):
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


class PaymentType(str, enum.Enum):
    FULL = "full"
    PARTIAL = "partial"
    BALANCE = "balance"
    CREDIT = "credit"
    CREDIT_REFUND = "credit_refund"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    SPEED_POINT = "speed_point"
    PAYFAST = "payfast"
    PAYPAL = "paypal"
    CREDIT_BALANCE = "credit_balance"
    ADMIN_CREDIT = "admin_credit"


IMMEDIATE_METHODS = (PaymentMethod.CASH, PaymentMethod.SPEED_POINT)
GATEWAY_METHODS = (PaymentMethod.PAYFAST, PaymentMethod.PAYPAL)


class Appointment(db.Model):
    __tablename__ = "appointments"

    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(12), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    treatment_id = db.Column(db.Integer, db.ForeignKey("treatments.id"), nullable=True, index=True)

    practitioner = db.Column(db.String(120), nullable=False)
    slot_date = db.Column(db.String(12), nullable=False)  # day key, e.g. 5_6_2025
    slot_time = db.Column(db.String(5), nullable=False)   # HH:MM
    duration = db.Column(db.Integer, nullable=False)      # minutes

    # point-in-time copies, never refreshed
    user_snapshot = db.Column(db.JSON, nullable=False)
    treatment_snapshot = db.Column(db.JSON, nullable=False)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    payment_status = db.Column(db.String(10), nullable=False, default=PaymentStatus.NONE.value)
    credit_applied = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at_checkout = db.Column(db.Boolean, nullable=False, default=False)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    credit_processed = db.Column(db.Boolean, nullable=False, default=False)

    # the one in-flight gateway attempt, if any
    pending_amount = db.Column(db.Numeric(10, 2), nullable=True)
    pending_payment_type = db.Column(db.String(20), nullable=True)
    pending_method = db.Column(db.String(20), nullable=True)
    pending_reference = db.Column(db.String(120), nullable=True, index=True)
    pending_created_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    transactions = db.relationship(
        "AppointmentTransaction",
        backref="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentTransaction.id",
    )

    __table_args__ = (
        db.Index("ix_appointments_practitioner_day", "practitioner", "slot_date"),
    )

    @property
    def pending_payment(self):
        if self.pending_amount is None:
            return None
        return {
            "amount": self.pending_amount,
            "payment_type": self.pending_payment_type,
            "method": self.pending_method,
            "reference": self.pending_reference,
            "timestamp": self.pending_created_at,
        }

    def set_pending_payment(self, amount, payment_type, method, reference):
        self.pending_amount = amount
        self.pending_payment_type = payment_type
        self.pending_method = method
        self.pending_reference = reference
        self.pending_created_at = datetime.utcnow()

    def clear_pending_payment(self):
        self.pending_amount = None
        self.pending_payment_type = None
        self.pending_method = None
        self.pending_reference = None
        self.pending_created_at = None

    @property
    def balance_due(self) -> Decimal:
        return max(Decimal("0.00"), Decimal(self.amount) - Decimal(self.paid_amount))

    def to_dict(self) -> dict:
        pending = self.pending_payment
        return {
            "id": self.id,
            "booking_number": self.booking_number,
            "user_id": self.user_id,
            "treatment_id": self.treatment_id,
            "practitioner": self.practitioner,
            "slot_date": self.slot_date,
            "slot_time": self.slot_time,
            "duration": self.duration,
            "user": self.user_snapshot,
            "treatment": self.treatment_snapshot,
            "amount": str(self.amount),
            "paid_amount": str(self.paid_amount),
            "balance_due": str(self.balance_due),
            "payment_status": self.payment_status,
            "credit_applied": str(self.credit_applied),
            "cancelled": self.cancelled,
            "cancelled_at_checkout": self.cancelled_at_checkout,
            "is_completed": self.is_completed,
            "credit_processed": self.credit_processed,
            "pending_payment": {
                "amount": str(pending["amount"]),
                "payment_type": pending["payment_type"],
                "method": pending["method"],
                "timestamp": pending["timestamp"].isoformat() if pending["timestamp"] else None,
            } if pending else None,
            "transactions": [t.to_dict() for t in self.transactions],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AppointmentTransaction(db.Model):
    """Append-only payment log entry. Rows are never updated."""
    __tablename__ = "appointment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, index=True)

    reference = db.Column(db.String(120), nullable=False)  # e.g. CASH_1718000000000
    status = db.Column(db.String(20), nullable=False)      # COMPLETED, COMPLETE
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_type = db.Column(db.String(20), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # id assigned by the gateway; unique so a callback can only ever be applied once
    gateway_reference = db.Column(db.String(120), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @validates("payment_type")
    def _check_payment_type(self, key, value):
        return PaymentType(value).value

    @validates("payment_method")
    def _check_payment_method(self, key, value):
        return PaymentMethod(value).value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "status": self.status,
            "amount": str(self.amount),
            "payment_type": self.payment_type,
            "payment_method": self.payment_method,
            "description": self.description,
            "gateway_reference": self.gateway_reference,
            "date": self.created_at.isoformat() if self.created_at else None,
        }
