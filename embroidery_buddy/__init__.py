"""Embroidery Buddy: share a FAT disk image over USB while accepting uploads."""

from embroidery_buddy.__version__ import __version__

__all__ = ["__version__"]
