"""Structured JSON-lines logging with correlation fields and secret redaction."""
