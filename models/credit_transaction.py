from datetime import datetime
from models.db import db

class CreditTransaction(db.Model):
    __tablename__ = "credit_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)  # signed: debits are negative
    type = db.Column(db.String(10), nullable=False)  # credit, debit

    # null for manual grants made by staff
    appointment_id = db.Column(db.Integer, nullable=True, index=True)

    description = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "type": self.type,
            "appointment_id": self.appointment_id,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }
