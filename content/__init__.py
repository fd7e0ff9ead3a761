"""
Content Catalog Package

Jobs, blogs, resources, digital products, courses and mock tests. Creating
and deleting point-earning content credits and debits the author's points.
"""

from .catalog import (
    ContentKind,
    ContentItem,
    ContentChange,
    ContentService,
    POINT_EARNING_KINDS,
)

__all__ = [
    "ContentKind",
    "ContentItem",
    "ContentChange",
    "ContentService",
    "POINT_EARNING_KINDS",
]
