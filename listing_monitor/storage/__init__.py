"""Persistence for hashes, signatures and statistics."""

from .base import TargetRepository
from .json_repository import JsonFileRepository

__all__ = ["JsonFileRepository", "TargetRepository"]
