"""
Contracts Module

Immutable types and enumerations shared by every layer of the knowledge
base. No layer compares raw status strings or builds event/locator dicts
by hand; everything goes through these contracts.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Expected failures are Result/Error values, not exceptions
3. Every enumerated value lives in schema.py
4. Timestamps are UTC, serialized with a 'Z' suffix
"""
