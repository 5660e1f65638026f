"""HTTP API for ingesting, editing and summarising trading signals."""

from .app import create_app
from .settings import WebSettings

__all__ = ["WebSettings", "create_app"]
