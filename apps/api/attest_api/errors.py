"""Exception hierarchy for the integrity subsystem.

Only recording failures propagate to callers. Verification outcomes are
classifications, and scan/notification problems are tallied and logged by
the components that hit them.
"""


class AttestError(Exception):
    """Base class for integrity subsystem errors."""


class RecordingError(AttestError):
    """A proof or provenance entry could not be persisted."""


class SchemaUnavailableError(RecordingError):
    """The proofs table exposes none of the known schema versions."""


class DuplicateProofError(RecordingError):
    """A proof with the same subject, kind, timestamp and hash already exists."""


class StorageError(AttestError):
    """Artifact storage backend failure."""


class ArtifactNotFoundError(StorageError, FileNotFoundError):
    """Artifact does not exist at the given locator."""


class NotificationError(AttestError):
    """A notification channel failed to deliver."""


class StorageTimeoutError(StorageError):
    """A storage call did not finish within its time limit."""
