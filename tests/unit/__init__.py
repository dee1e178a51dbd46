"""
Unit Tests Package for the ParkTrack core

Each component is tested in isolation: pricing, credential codec, debouncer,
conflict resolver, models, configuration, DTOs and the event bus.
"""
