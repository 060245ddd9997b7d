"""Persistence layer: SQLite database, inventory store and import ledger."""

from .database import Database
from .ledger import ImportLedger
from .store import InventoryStore

__all__ = ["Database", "InventoryStore", "ImportLedger"]
