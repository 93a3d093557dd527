"""
monstack CLI Base Command Classes

Abstract base classes for consistent command structure.
"""

from .base_command import BaseCommand
from .stack_command import StackCommand

__all__ = [
    "BaseCommand",
    "StackCommand",
]
