from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Union

from .models import Record

logger = logging.getLogger(__name__)

# One entity per line: "#<digits>=<definition>;" and nothing after the semicolon.
ENTITY_LINE = re.compile(rb"#(\d+)=(.+);")


class RecordParser:
    """
    Abstract record parser. Implementations should be stateless and reusable.
    """

    engine_version = "base"

    def parse(self, path: Union[str, Path]) -> List[Record]:
        raise NotImplementedError

    def parse_stream(self, stream: Union[IO[bytes], Iterable[bytes]]) -> List[Record]:
        raise NotImplementedError


class StepRecordParser(RecordParser):
    """
    Line-oriented parser for STEP exchange files.

    Header and footer sections, blank lines and entities that continue over
    several lines do not match the entity pattern and are skipped. The whole
    document is materialized in memory, so very large files cost one list of
    records each.
    """

    engine_version = "step-line-v1"

    def parse(self, path: Union[str, Path]) -> List[Record]:
        with open(path, "rb") as stream:
            records = self.parse_stream(stream)
        logger.debug("Parsed %d records from %s", len(records), path)
        return records

    def parse_stream(self, stream: Union[IO[bytes], Iterable[bytes]]) -> List[Record]:
        return list(self.iter_records(stream))

    def iter_records(self, lines: Iterable[Union[bytes, str]]) -> Iterator[Record]:
        skipped = 0
        for line in lines:
            record = self.parse_line(line)
            if record is None:
                skipped += 1
                continue
            yield record
        if skipped:
            logger.debug("Skipped %d non-entity lines", skipped)

    def parse_line(self, line: Union[bytes, str]):
        if isinstance(line, str):
            line = line.encode("utf-8")
        if line.endswith(b"\n"):
            line = line[:-1]
            if line.endswith(b"\r"):
                line = line[:-1]
        match = ENTITY_LINE.fullmatch(line)
        if not match:
            return None
        return Record(id=match.group(1).decode("ascii"), definition=match.group(2))
