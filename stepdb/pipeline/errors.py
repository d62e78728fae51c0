from __future__ import annotations


class StepDBError(Exception):
    """Base class for pipeline failures."""


class StoreError(StepDBError):
    """The key-value engine failed to open, read, write or iterate."""


class PartialIngestError(StoreError):
    """
    A batch flush failed part way through a document. Batches committed before
    the failure stay visible; the failing batch and everything after it are not
    written.
    """

    def __init__(self, message: str, namespace: str, records_committed: int, batches_committed: int):
        super().__init__(message)
        self.namespace = namespace
        self.records_committed = records_committed
        self.batches_committed = batches_committed


class ExportError(StepDBError):
    """Reading the prefix, writing the sink or uploading the result failed."""


class ObjectStorageError(StepDBError):
    pass


class JobNotFoundError(StepDBError, LookupError):
    pass
