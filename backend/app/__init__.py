"""Starlight signaling server application."""
