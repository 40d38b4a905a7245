"""
Services package for the ranked-choice engine.
"""

from .base import BaseService

__all__ = ['BaseService']
