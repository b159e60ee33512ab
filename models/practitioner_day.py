from datetime import datetime
from models.db import db

class PractitionerDay(db.Model):
    """
    One row per practitioner per day.

    `booked_times` is a display cache of booked start times; availability is always
    re-derived from appointments. The row itself is what a booking locks, so two
    bookings for the same practitioner and day are serialised.
    """
    __tablename__ = "practitioner_days"

    id = db.Column(db.Integer, primary_key=True)
    practitioner = db.Column(db.String(120), nullable=False)
    slot_date = db.Column(db.String(12), nullable=False)

    booked_times = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("practitioner", "slot_date", name="uq_practitioner_day"),
    )
