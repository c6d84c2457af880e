"""Pydantic schemas and transient value types."""
