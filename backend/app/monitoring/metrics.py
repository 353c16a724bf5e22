"""Metric definitions for the signaling server."""

from __future__ import annotations

from .registry import registry


signaling_messages_total = registry.counter(
    "signaling_messages_total",
    "Signaling envelopes processed, by message type and direction.",
    label_names=("type", "direction"),
)

signaling_protocol_errors_total = registry.counter(
    "signaling_protocol_errors_total",
    "Inbound frames rejected by the protocol parser.",
    label_names=("reason",),
)

signaling_active_connections = registry.gauge(
    "signaling_active_connections",
    "Number of websocket clients currently registered.",
)

matchmaking_waiting_clients = registry.gauge(
    "matchmaking_waiting_clients",
    "Number of clients waiting in the matchmaking queue.",
)

matchmaking_active_rooms = registry.gauge(
    "matchmaking_active_rooms",
    "Number of rooms with two paired participants.",
)

matchmaking_matches_total = registry.counter(
    "matchmaking_matches_total",
    "Number of rooms created by the matchmaker.",
)

relay_rejections_total = registry.counter(
    "relay_rejections_total",
    "Signals refused because the target was not the sender's current partner.",
)

liveness_terminations_total = registry.counter(
    "liveness_terminations_total",
    "Sockets terminated for not answering the previous liveness ping.",
)
