"""Data models and configuration."""
