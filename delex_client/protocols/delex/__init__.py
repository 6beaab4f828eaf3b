"""DeLex exchange / lending protocol."""
from .binding import LedgerBinding

__all__ = ["LedgerBinding"]
