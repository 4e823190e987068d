"""Diagnostics persistence package."""

from cmdtail.diagnostics.base import (
    DiagnosticsRecord,
    DiagnosticsStore,
    InMemoryDiagnosticsStore,
)
from cmdtail.diagnostics.file_store import FileDiagnosticsStore

__all__ = [
    "DiagnosticsRecord",
    "DiagnosticsStore",
    "FileDiagnosticsStore",
    "InMemoryDiagnosticsStore",
]
