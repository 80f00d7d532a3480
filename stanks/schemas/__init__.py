"""Pydantic payloads for the economy entry points."""
