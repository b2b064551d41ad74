"""
Dependency Audit Tool

A tool for analyzing declared, imported and installed dependencies of
JavaScript and TypeScript projects.
"""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main"]
