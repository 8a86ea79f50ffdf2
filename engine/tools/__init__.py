"""
Press Clipping Tools.

Submodules:
- press: Press clipping extraction, relevance filtering and indexing
"""

from tools import press

__all__ = [
    "press",
]
