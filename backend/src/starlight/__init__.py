"""Starlight: two-party call matchmaking, signaling relay and client call control."""

__version__ = "2.0.0"
