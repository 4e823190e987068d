"""JSON file-backed diagnostics store."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from cmdtail.diagnostics.base import DiagnosticsRecord, DiagnosticsStore
from cmdtail.util.logging import get_logger


class FileDiagnosticsStore(DiagnosticsStore):
    """Persist the last diagnostics record as a JSON file.

    Writes go through a temporary file in the same directory followed by
    ``os.replace``, so readers never observe a partially written record.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: File that holds the latest record.
        """

        self._path = path.expanduser()
        self._logger = get_logger(self.__class__.__name__)

    @property
    def path(self) -> Path:
        return self._path

    def record(self, record: DiagnosticsRecord) -> None:
        """Write the record, logging instead of raising on failure."""

        payload = json.dumps(record.to_dict(), indent=2, sort_keys=True)
        temp_path: Path | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temp_path = Path(handle.name)
                handle.write(payload)
            os.replace(temp_path, self._path)
            temp_path = None
        except OSError as exc:
            self._logger.error("Failed to persist command diagnostics to %s: %s", self._path, exc)
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

    def load_last(self) -> DiagnosticsRecord | None:
        """Read the stored record; unreadable or corrupt files yield None."""

        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            self._logger.warning("Failed to read command diagnostics from %s: %s", self._path, exc)
            return None

        try:
            return DiagnosticsRecord.from_dict(json.loads(raw.decode("utf-8")))
        except (KeyError, TypeError, ValueError) as exc:
            self._logger.warning("Failed to decode last command diagnostics: %s", exc)
            return None
