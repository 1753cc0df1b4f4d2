"""Pydantic schemas: inbound adapters, canonical record, cache projection."""
