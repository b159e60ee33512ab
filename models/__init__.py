from .db import db, atomic
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import LoginSession
from .treatment import Treatment, TreatmentPrice
from .appointment import Appointment, AppointmentTransaction, PaymentStatus, PaymentType, PaymentMethod
from .practitioner_day import PractitionerDay
from .credit_transaction import CreditTransaction
from .booking_counter import BookingCounter
