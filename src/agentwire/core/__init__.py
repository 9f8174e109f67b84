"""Conversation loop, routing, interaction and application wiring."""
