"""Core data model and pure helpers for pushstore."""
