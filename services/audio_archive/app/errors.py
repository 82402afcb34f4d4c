"""Failures raised by the archive's backend clients and pipelines."""


class ArchiveError(Exception):
    """Base class for every archive failure surfaced at a route boundary."""


class DecodeError(ArchiveError):
    """The blob could not be parsed as audio."""


class InvalidUploadError(ArchiveError):
    """A candidate file or title does not meet the upload preconditions."""


class StorageWriteError(ArchiveError):
    """The object store rejected a write or could not be reached."""


class StorageDeleteError(StorageWriteError):
    """The object store failed to remove an asset."""


class MetadataReadError(ArchiveError):
    """A metadata query failed."""


class RecordNotFoundError(MetadataReadError):
    """No record exists with the requested identifier."""


class MetadataWriteError(ArchiveError):
    """A metadata insert, update or delete failed."""


class AuthError(ArchiveError):
    """The session provider could not dispatch a sign-in link."""


class OwnershipError(ArchiveError):
    """The caller is not the owner of the record it tries to change."""
