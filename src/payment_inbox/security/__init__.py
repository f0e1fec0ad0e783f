"""Inbound request verification."""
