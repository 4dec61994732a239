"""Persistence schema for questlog (ORM models only)."""
