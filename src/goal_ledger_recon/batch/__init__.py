"""Batch orchestration of the match engine."""

from .runner import BatchRunner, MatchFilter

__all__ = ["BatchRunner", "MatchFilter"]
