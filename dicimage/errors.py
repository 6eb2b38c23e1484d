from __future__ import annotations


class ImageError(Exception):
    """Base class for every error raised by dicimage."""


class ConstructionError(ImageError, ValueError):
    """An Image could not be built from the given extents or storage."""


class FormatError(ImageError, OSError):
    """A file could not be decoded, or an output path could not be written."""


class SubRegionError(ConstructionError, FormatError):
    """The requested sub-rectangle does not fit inside its parent image."""


class ConfigError(ImageError, ValueError):
    pass


class AccessError(ImageError, IndexError):
    """Out-of-range pixel access, or a gradient read before it was computed."""
