"""Image Engine - derivative cache and background build pipeline.

This package provides:
- Derivative store (db)
- Box fitting, scaling and rotation (transform)
- Thumbnail/resized-image building (builder)
- Startup staleness reconciliation (reconciler)
- The background build queue and working set (build_worker, working_set)
- Zip export (archive)

Usage:
    from image_bundler.image_engine import ImageSession

    session = ImageSession(db_path)
    session.build_completed.connect(on_built)
    session.start()
    session.add_to_working_set("/path/to/image.jpg")
"""

from .engine import ImageSession
from .errors import (
    DuplicateNameConflict,
    ImageBundlerError,
    NotFound,
    SourceUnreadable,
    StoreIOFailure,
    UnsupportedFormat,
)

__all__ = [
    "DuplicateNameConflict",
    "ImageBundlerError",
    "ImageSession",
    "NotFound",
    "SourceUnreadable",
    "StoreIOFailure",
    "UnsupportedFormat",
]
