"""Test suite for the ParkTrack core"""
