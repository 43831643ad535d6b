"""
Container runtime collaborators.
"""

from .base import ContainerRuntime
from .compose import ComposeRuntime

__all__ = [
    'ContainerRuntime',
    'ComposeRuntime',
]
