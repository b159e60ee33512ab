from datetime import datetime
from models.db import db


class BookingCounter(db.Model):
    """
    Single-row sequence for booking numbers.

    Only ever bumped, inside the booking unit and under a row lock, so deleting an
    appointment never makes its number available again.
    """
    __tablename__ = "booking_counters"

    id = db.Column(db.Integer, primary_key=True)
    last_number = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
