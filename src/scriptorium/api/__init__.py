"""HTTP adapter exposing the repository service to host shells."""

from scriptorium.api.main import create_app

__all__ = ["create_app"]
