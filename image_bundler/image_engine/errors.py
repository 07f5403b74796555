"""Exception hierarchy for the derivative cache and build pipeline."""


class ImageBundlerError(Exception):
    """Base exception for all image bundler errors."""


class SourceUnreadable(ImageBundlerError):
    """Raised when a source image cannot be read or decoded.

    Covers missing files, permission errors, truncated data and codecs the
    decoder does not understand. Never retried automatically.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class StoreIOFailure(ImageBundlerError):
    """Raised when the derivative store cannot complete an operation."""


class NotFound(ImageBundlerError):
    """Raised when a store lookup requires an entry that does not exist."""


class DuplicateNameConflict(ImageBundlerError):
    """Raised when a display name is already used in the working set."""

    def __init__(self, name: str):
        super().__init__(f"display name already in use: {name}")
        self.name = name


class UnsupportedFormat(ImageBundlerError):
    """Raised when a file or display name has a non-accepted extension."""

    def __init__(self, name: str):
        super().__init__(f"unsupported image type: {name}")
        self.name = name
