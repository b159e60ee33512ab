import logging

from flask import current_app
from sqlalchemy import func

from models import db
from models.appointment import Appointment
from models.booking_counter import BookingCounter

logger = logging.getLogger(__name__)

COUNTER_ID = 1


def _width() -> int:
    return int(current_app.config.get("BOOKING_NUMBER_WIDTH", 6))


def format_booking_number(n: int) -> str:
    return str(n).zfill(_width())


def _highest_issued() -> int:
    # fixed width, so the lexicographic max is the numeric max
    last = db.session.query(func.max(Appointment.booking_number)).scalar()
    return int(last) if last else 0


def _locked_counter() -> BookingCounter:
    counter = (
        db.session.query(BookingCounter)
        .filter_by(id=COUNTER_ID)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if counter is None:
        # a concurrent first booking fails here on the primary key and is retried
        counter = BookingCounter(id=COUNTER_ID, last_number=_highest_issued())
        db.session.add(counter)
        db.session.flush()
    return counter


def next_booking_number() -> str:
    """
    Bump the counter row and return the new number, zero padded.

    Joins the caller's unit of work: a rolled back booking rolls the bump back with it,
    a deleted appointment does not. Numbers are never handed out twice.
    """
    counter = _locked_counter()
    counter.last_number = (counter.last_number or 0) + 1
    db.session.flush()

    number = format_booking_number(counter.last_number)
    logger.debug("Issued booking number %s", number)
    return number
