"""
Configuration package for the drive reconciler.
"""

from .settings import AppConfig, ensure_directories

__all__ = ["AppConfig", "ensure_directories"]
