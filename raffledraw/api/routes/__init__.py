from . import admin, raffles, uploads

__all__ = ["admin", "raffles", "uploads"]
