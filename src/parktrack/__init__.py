"""
ParkTrack core: parking session lifecycle and tiered billing

Layers:
- domain: credentials, sessions, pricing, conflict detection
- application: scan coordination, debouncing, DTOs
- infrastructure: session stores and the event bus
"""

__version__ = "1.0.0"
