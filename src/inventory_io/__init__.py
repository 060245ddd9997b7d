"""Equipment Inventory Import/Export - bulk CSV import and export for site/cell/equipment data."""

from .cli import app
from .config import ImporterConfig

__version__ = "0.1.0"
__all__ = ["app", "ImporterConfig"]
