"""Shared infrastructure: database, logging, exceptions, locks, LLM client."""
