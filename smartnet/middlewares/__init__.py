"""Набор middleware для бота SmartNet."""

from .db import DatabaseMiddleware
from .errors import ErrorsMiddleware
from .throttling import ThrottlingMiddleware

__all__ = [
    "DatabaseMiddleware",
    "ErrorsMiddleware",
    "ThrottlingMiddleware",
]
