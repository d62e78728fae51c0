from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from .errors import PartialIngestError, StoreError
from .models import IngestResult, Record, StorageEntry, compose_key
from .store import NamespacedStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


class DocumentIngestor:
    """
    Writes one document's records under `<namespace>_<id>` keys, committing
    them in batches of `batch_size`. Atomicity is per batch: if a flush fails
    the batches already committed stay, and the error is raised.
    """

    def __init__(
        self,
        store: NamespacedStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_batch: Optional[Callable[[int, int], None]] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size
        self.on_batch = on_batch

    def ingest(self, namespace: str, records: Iterable[Record]) -> IngestResult:
        if not namespace:
            raise ValueError("namespace must not be empty")

        batch: List[StorageEntry] = []
        records_committed = 0
        batches_committed = 0

        for record in records:
            batch.append(StorageEntry(key=compose_key(namespace, record.id), value=record.definition))
            if len(batch) >= self.batch_size:
                self._flush(namespace, batch, records_committed, batches_committed)
                records_committed += len(batch)
                batches_committed += 1
                batch = []

        # Final partial batch
        if batch:
            self._flush(namespace, batch, records_committed, batches_committed)
            records_committed += len(batch)
            batches_committed += 1

        logger.info(
            "Ingested %d records into namespace %s in %d batches",
            records_committed,
            namespace,
            batches_committed,
        )
        return IngestResult(
            namespace=namespace,
            records_written=records_committed,
            batches_committed=batches_committed,
        )

    def _flush(self, namespace: str, batch: List[StorageEntry], records_committed: int, batches_committed: int) -> None:
        try:
            self.store.write_batch(batch)
        except StoreError as exc:
            logger.error(
                "Batch %d of namespace %s failed after %d committed records: %s",
                batches_committed + 1,
                namespace,
                records_committed,
                exc,
            )
            raise PartialIngestError(
                f"Ingest of {namespace} aborted at batch {batches_committed + 1}: {exc}",
                namespace=namespace,
                records_committed=records_committed,
                batches_committed=batches_committed,
            ) from exc
        logger.debug("Committed batch %d (%d entries) for %s", batches_committed + 1, len(batch), namespace)
        if self.on_batch:
            self.on_batch(batches_committed + 1, records_committed + len(batch))
