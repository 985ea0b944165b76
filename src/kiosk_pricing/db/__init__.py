"""Persistence: engine/session setup and ORM tables."""
