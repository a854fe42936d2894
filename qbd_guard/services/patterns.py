from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from qbd_guard.schemas.patterns import PatternKind, PatternMatch, PostingPattern


_Signature = tuple[tuple[str, int, int], ...]


class PatternStore:
    """Read-only lookup over ``<kind>_*.json`` posting pattern files.

    Parsed files are kept in an index keyed by the embedded party id. The
    index is rebuilt whenever the set of files or any modification time
    changes, so edits made offline are picked up on the next lookup.
    """

    def __init__(self, directory: Path | str, kind: PatternKind = "vendor") -> None:
        self.directory = Path(directory)
        self.kind: PatternKind = kind
        self.logger = logging.getLogger("qbd_guard.services.patterns")
        self._signature: Optional[_Signature] = None
        self._records: list[PatternMatch] = []
        self._index: dict[str, PatternMatch] = {}

    def find_pattern(self, party_id: str) -> Optional[PatternMatch]:
        self._ensure_index()
        return self._index.get(party_id)

    def pattern_exists(self, party_id: str) -> bool:
        return self.find_pattern(party_id) is not None

    def all_patterns(self) -> list[PatternMatch]:
        self._ensure_index()
        return list(self._records)

    def _candidate_files(self) -> list[Path]:
        prefix = f"{self.kind}_"
        return sorted(
            path
            for path in self.directory.iterdir()
            if path.is_file() and path.name.startswith(prefix) and path.suffix == ".json"
        )

    def _signature_for(self, files: list[Path]) -> _Signature:
        entries = []
        for path in files:
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.append((path.name, stat.st_mtime_ns, stat.st_size))
        return tuple(entries)

    def _ensure_index(self) -> None:
        if not self.directory.is_dir():
            self._signature = None
            self._records = []
            self._index = {}
            return

        files = self._candidate_files()
        signature = self._signature_for(files)
        if signature == self._signature:
            return

        records: list[PatternMatch] = []
        index: dict[str, PatternMatch] = {}
        for path in files:
            try:
                content = json.loads(path.read_text(encoding="utf-8"))
                pattern = PostingPattern.model_validate(content)
            except (OSError, ValueError) as exc:
                self.logger.warning(
                    "pattern_file_skipped",
                    extra={"file": path.name, "kind": self.kind, "reason": str(exc)},
                )
                continue
            match = PatternMatch(file=path.name, pattern=pattern)
            records.append(match)
            party = pattern.party(self.kind)
            if party is not None and party.id not in index:
                index[party.id] = match

        self._records = records
        self._index = index
        self._signature = signature
        self.logger.debug(
            "pattern_index_rebuilt",
            extra={"kind": self.kind, "files": len(files), "indexed": len(index)},
        )
