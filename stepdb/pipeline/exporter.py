from __future__ import annotations

import logging
import time
from contextlib import closing
from typing import Iterator

from .errors import ExportError, ObjectStorageError, StoreError
from .models import KEY_SEPARATOR, ExportResult, StorageEntry, encode_namespace
from .storage import ExportSink
from .store import NamespacedStore

logger = logging.getLogger(__name__)


class PrefixExporter:
    """
    Rebuilds a document from every entry stored under `<prefix>_` and writes it
    as `#<id>=<value>;` lines in store key order. Keys are compared bytewise,
    so ids of different widths come back in lexicographic rather than numeric
    order.
    """

    def __init__(self, store: NamespacedStore):
        self.store = store

    def iter_lines(self, prefix: str) -> Iterator[bytes]:
        prefix_bytes = encode_namespace(prefix)
        head = len(prefix_bytes) + len(KEY_SEPARATOR)
        with self.store.iterate_prefix(prefix_bytes) as entries:
            for entry in entries:
                line = self.render(entry, prefix_bytes, head)
                if line is not None:
                    yield line

    @staticmethod
    def render(entry: StorageEntry, prefix_bytes: bytes, head: int):
        key = entry.key
        # Skips sibling namespaces: DOCX_1 under DOC, and DOC_2_1 under DOC.
        if key[len(prefix_bytes):head] != KEY_SEPARATOR:
            return None
        record_id = key[head:]
        if not record_id.isdigit():
            return None
        return b"#" + record_id + b"=" + entry.value + b";\n"

    def export(self, prefix: str, sink: ExportSink) -> ExportResult:
        destination = sink.describe()
        start = time.perf_counter()
        written = 0
        try:
            with sink.open_stream() as stream, closing(self.iter_lines(prefix)) as lines:
                for line in lines:
                    stream.write(line)
                    written += 1
        except (StoreError, OSError, ObjectStorageError) as exc:
            logger.error("Export of %s to %s failed: %s", prefix, destination, exc)
            raise ExportError(f"Export of {prefix} to {destination} failed: {exc}") from exc

        logger.info(
            "Exported %d records of %s to %s in %.2fs",
            written,
            prefix,
            destination,
            time.perf_counter() - start,
        )
        return ExportResult(prefix=prefix, records_written=written, destination=destination)
