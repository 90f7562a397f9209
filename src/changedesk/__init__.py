"""Booking-change orchestration service for tour operations staff."""
