"""Application layer: scan coordination, debouncing and DTOs"""
