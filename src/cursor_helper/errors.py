"""Exception types raised by cursor-helper.

Lookups that find nothing return ``None`` rather than raising. The exceptions
below are reserved for conditions where an operation cannot go on:

- ``PreconditionFailure``: checked before anything is mutated (target exists,
  source missing, Cursor still running).
- ``NotFound``: a migration command has no stored metadata to work with.
- ``FatalIOError``: the storage index or a database cannot be opened at all.
- ``VersionMismatch``: a backup manifest was written by an unknown format.
- ``MetadataUnavailable``: a directory's creation time cannot be read.
"""


class CursorHelperError(Exception):
    """Base class for all cursor-helper errors."""


class PreconditionFailure(CursorHelperError):
    pass


class NotFound(CursorHelperError):
    pass


class FatalIOError(CursorHelperError):
    pass


class VersionMismatch(CursorHelperError):
    def __init__(self, found: object, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported backup manifest version: {found!r} (supported: {supported})"
        )


class MetadataUnavailable(CursorHelperError):
    pass
