"""
Change detection: which files changed, and which services they belong to.
"""

from .diff_reader import GitDiffReader, INITIAL_REVISION
from .resolver import ServiceMapper, ChangeResolver

__all__ = [
    'GitDiffReader',
    'INITIAL_REVISION',
    'ServiceMapper',
    'ChangeResolver',
]
