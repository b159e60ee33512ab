from datetime import datetime
from models.db import db

class Treatment(db.Model):
    __tablename__ = "treatments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    speciality = db.Column(db.String(120), nullable=False)
    about = db.Column(db.Text, nullable=True)

    available = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    prices = db.relationship(
        "TreatmentPrice",
        backref="treatment",
        cascade="all, delete-orphan",
        order_by="TreatmentPrice.duration",
    )

    def price_for(self, duration: int):
        for p in self.prices:
            if p.duration == duration:
                return p.price
        return None

    def snapshot(self) -> dict:
        # price list deliberately left out: the appointment keeps its own amount
        return {
            "id": self.id,
            "name": self.name,
            "speciality": self.speciality,
            "about": self.about,
        }

    def to_dict(self) -> dict:
        return {
            **self.snapshot(),
            "available": self.available,
            "price_list": [{"duration": p.duration, "price": str(p.price)} for p in self.prices],
        }


class TreatmentPrice(db.Model):
    __tablename__ = "treatment_prices"

    id = db.Column(db.Integer, primary_key=True)
    treatment_id = db.Column(db.Integer, db.ForeignKey("treatments.id"), nullable=False, index=True)
    duration = db.Column(db.Integer, nullable=False)  # minutes
    price = db.Column(db.Numeric(10, 2), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("treatment_id", "duration", name="uq_treatment_duration"),
    )
