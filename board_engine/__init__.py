"""Persona board chat-to-edit engine."""
