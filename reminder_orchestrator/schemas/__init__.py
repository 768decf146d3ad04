"""Pydantic schemas for settings, accounting records, callbacks and job results."""
