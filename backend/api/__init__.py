"""API route handlers."""
from . import balances

__all__ = ["balances"]
