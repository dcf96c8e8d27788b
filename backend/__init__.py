"""
Backend package for the ride-sharing rooms API.

This package provides a FastAPI application with database, live-update,
maps and storage abstractions so the service can run against Postgres or
Firestore in production and fully in memory for tests.
"""
