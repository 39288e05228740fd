"""
Tricks: one strategy per category of billable AWS resource.
"""

from .base import ResourceState, StateCollector, Trick, TrickContext
from .registry import TrickRegistry

__all__ = [
    'ResourceState',
    'StateCollector',
    'Trick',
    'TrickContext',
    'TrickRegistry',
]
