"""Booking, availability, payment and credit engine."""
