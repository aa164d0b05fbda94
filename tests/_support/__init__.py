"""
Test support utilities for tagcache tests.

Helpers that build raw Redis replies and don't fit as pytest fixtures.
"""
