"""
Fragments Service package.

This module provides a FastAPI application for storing user-owned fragments
of text, data and images and serving them back raw or converted.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
