"""Parking spot lifecycle and billing engine."""
