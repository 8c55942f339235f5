"""Venue clients: REST gateway, ticker stream and snapshot aggregation."""
