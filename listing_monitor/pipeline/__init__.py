"""Monitoring cycle orchestration, scheduling and CLI."""
