"""HTTP surface for Character Chat."""

from .app import create_app

__all__ = ["create_app"]
