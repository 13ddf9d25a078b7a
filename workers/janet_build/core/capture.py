"""
Capture step — run a generator program and collect its stdout.

A ``GeneratorStep`` turns "run this tool" into "give me these bytes".
``ProcessGenerator`` is the subprocess-backed implementation used for
``janet_boot``:

  - stdin closed, stdout piped, stderr inherited (diagnostics reach the user);
  - stdout drained in chunks under a byte cap; exceeding the cap is an
    OutputOverflowError, never a truncation;
  - the process is waited on only after stdout hits EOF, so a full pipe
    cannot deadlock the child;
  - any exit status other than 0 is a NonZeroExitError with the raw code;
  - on every failure after spawn the child is killed and reaped first.

Process handles never leave this module.
"""
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from janet_build.core.errors import (
    CaptureReadError,
    NonZeroExitError,
    OutputOverflowError,
    SpawnError,
)

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_LIMIT = 10_000_000
CHUNK_SIZE = 65536


class GeneratorStep(ABC):
    """Something that produces the bytes of a generated source."""

    @abstractmethod
    def produce(self) -> bytes:
        ...

    def cancel(self) -> None:
        """Abort a running ``produce`` call (best effort)."""


class ProcessGenerator(GeneratorStep):
    """Run *argv* and return its entire stdout, bounded by *limit* bytes."""

    def __init__(self, argv: Sequence[str], limit: int = DEFAULT_CAPTURE_LIMIT):
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv: List[str] = [str(a) for a in argv]
        self.limit = limit
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        self._cancelled = False

    def produce(self) -> bytes:
        logger.debug("capturing stdout of %s", " ".join(self.argv))
        try:
            proc = subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=None,
            )
        except OSError as e:
            raise SpawnError(self.argv, e) from e

        with self._lock:
            self._proc = proc
            if self._cancelled:
                proc.kill()
        try:
            output = self._drain(proc)
            returncode = proc.wait()
        except BaseException:
            self._kill(proc)
            raise
        finally:
            if proc.stdout is not None:
                proc.stdout.close()
            with self._lock:
                self._proc = None

        if returncode != 0:
            logger.error(f"{self.argv[0]} exit: {returncode}")
            raise NonZeroExitError(self.argv, returncode)

        logger.debug("captured %d bytes from %s", len(output), self.argv[0])
        return output

    def _drain(self, proc: subprocess.Popen) -> bytes:
        """Read stdout to EOF; never buffer more than limit + 1 chunk."""
        assert proc.stdout is not None
        chunks: List[bytes] = []
        total = 0
        while True:
            try:
                chunk = proc.stdout.read(CHUNK_SIZE)
            except OSError as e:
                raise CaptureReadError(f"reading stdout of {self.argv[0]} failed: {e}") from e
            if not chunk:
                break
            total += len(chunk)
            if total > self.limit:
                raise OutputOverflowError(self.argv, self.limit)
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            proc.kill()
        except OSError:
            pass
        proc.wait()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            proc = self._proc
        if proc is not None and proc.poll() is None:
            logger.info(f"killing {self.argv[0]} (pid {proc.pid})")
            try:
                proc.kill()
            except OSError:
                pass
