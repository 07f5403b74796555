"""Image bundler: cached thumbnails, resized working copies and zip export."""

__version__ = "0.1.0"
