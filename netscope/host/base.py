"""
Host contract for NetScope.

A host is the disassembler-side collaborator that owns the binary document.
The engine only reads procedures, reference edges and strings from it, and
optionally writes findings back as annotations.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Tuple, Union

from netscope.formatter import ReportFormatter
from netscope.models import AnalysisReport, ProcedureRef


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class HostDocument(ABC):
    """
    Abstract base class for analysis hosts.

    Implementations must return stable data for the duration of one
    analysis run; the orchestrator holds the document's read lock while it
    enumerates procedures and strings.
    """

    def __init__(self):
        self.lock = ReadWriteLock()

    @abstractmethod
    def list_procedures(self) -> Sequence[ProcedureRef]:
        """Return every procedure with its outgoing reference edges."""
        pass

    @abstractmethod
    def list_strings(self) -> Sequence[Tuple[int, Union[bytes, str]]]:
        """Return (address, raw bytes) for every extracted string literal."""
        pass

    @abstractmethod
    def resolve_reference_symbol(self, address: int) -> Optional[str]:
        """Return the display name of the symbol at address, if known."""
        pass

    @property
    def supports_annotation(self) -> bool:
        return False

    def annotate(self, address: int, text: str) -> None:
        """Attach a comment to address in the host document."""
        raise NotImplementedError(f"{type(self).__name__} does not support annotations")

    def describe(self) -> str:
        """Short human-readable description of the analysed document."""
        return type(self).__name__

    def render(self, report: AnalysisReport) -> str:
        """Text form of a report for display in the host's console."""
        return ReportFormatter(self.describe()).format_text(report)

    @contextmanager
    def read_lock(self) -> Iterator['HostDocument']:
        with self.lock.read_locked():
            yield self

    @contextmanager
    def write_lock(self) -> Iterator['HostDocument']:
        with self.lock.write_locked():
            yield self
