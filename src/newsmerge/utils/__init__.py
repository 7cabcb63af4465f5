"""Utility modules for newsmerge."""

from newsmerge.utils.slugs import slugify, unique_slug

__all__ = [
    "slugify",
    "unique_slug",
]
