"""
Test Fixtures Package

Deterministic stand-ins for the clock and the alert transport.
"""
