"""Diagnostics HTTP surface."""

from authprobe.api.app import create_app

__all__ = ["create_app"]
