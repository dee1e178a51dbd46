"""
Integration Tests Package for the ParkTrack core

Integration tests focus on:
1. Scan flows end to end through the coordinator and a real store
2. Cancellation of superseded scans
3. Store contract behaviour of the in-memory and SQLAlchemy adapters
"""
