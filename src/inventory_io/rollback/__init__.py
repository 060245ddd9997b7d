"""Rollback of import jobs."""

from .manager import RollbackManager

__all__ = ["RollbackManager"]
