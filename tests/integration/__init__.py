"""
Integration Tests Package for the ParkSmart booking core

Integration tests verify that the booking service, the storage backends
and the concurrency guards work together correctly:
1. Booking flows against a real SQLAlchemy schema (SQLite)
2. Store-level guards: slot compare-and-set, active-booking uniqueness
3. Concurrent booking requests racing for the same slots
"""
