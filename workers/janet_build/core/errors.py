"""
Errors — the failure taxonomy of a build graph execution.

Every error is fatal: there is no recover-and-continue path anywhere in
the pipeline.  Each exception carries a ``FailureKind`` so the JSON
report can record *why* a node failed without string matching.
"""
from enum import Enum, unique
from typing import Sequence


@unique
class FailureKind(str, Enum):
    CONFIGURATION = "CONFIGURATION"
    COMPILATION = "COMPILATION"
    SPAWN = "SPAWN"
    OUTPUT_OVERFLOW = "OUTPUT_OVERFLOW"
    NON_ZERO_EXIT = "NON_ZERO_EXIT"
    READ_ERROR = "READ_ERROR"
    DISCOVERY = "DISCOVERY"
    GRAPH_CYCLE = "GRAPH_CYCLE"
    ARTIFACT_NOT_READY = "ARTIFACT_NOT_READY"
    CANCELLED = "CANCELLED"
    IO_ERROR = "IO_ERROR"


class BuildError(Exception):
    """Root of every error raised by janet_build."""

    kind: FailureKind = FailureKind.CONFIGURATION


class ConfigurationError(BuildError):
    """A config field or node definition is invalid (pre-build)."""

    kind = FailureKind.CONFIGURATION


class CompilationError(BuildError):
    """The native compiler rejected a node's inputs."""

    kind = FailureKind.COMPILATION

    def __init__(self, command: Sequence[str], returncode: int, diagnostics: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.diagnostics = diagnostics
        msg = f"compiler exited with status {returncode}: {' '.join(self.command)}"
        if diagnostics:
            msg += f"\n{diagnostics.rstrip()}"
        super().__init__(msg)


class SpawnError(BuildError):
    """A subprocess could not be started."""

    kind = FailureKind.SPAWN

    def __init__(self, argv: Sequence[str], cause: OSError):
        self.argv = list(argv)
        self.cause = cause
        super().__init__(f"failed to spawn {self.argv[0]}: {cause}")


class OutputOverflowError(BuildError):
    """Captured output exceeded the capture cap."""

    kind = FailureKind.OUTPUT_OVERFLOW

    def __init__(self, argv: Sequence[str], limit: int):
        self.argv = list(argv)
        self.limit = limit
        super().__init__(
            f"{self.argv[0]} wrote more than {limit} bytes to stdout"
        )


class NonZeroExitError(BuildError):
    """A subprocess did not terminate with exit code 0."""

    kind = FailureKind.NON_ZERO_EXIT

    def __init__(self, argv: Sequence[str], returncode: int):
        self.argv = list(argv)
        self.returncode = returncode
        if returncode < 0:
            status = f"killed by signal {-returncode}"
        else:
            status = f"exited with status {returncode}"
        super().__init__(f"{self.argv[0]} {status} (raw returncode {returncode})")


class CaptureReadError(BuildError):
    """Reading a subprocess's stdout failed."""

    kind = FailureKind.READ_ERROR


class DiscoveryError(BuildError):
    """A directory that must be scanned is missing or unreadable."""

    kind = FailureKind.DISCOVERY


class GraphCycleError(BuildError):
    kind = FailureKind.GRAPH_CYCLE


class ArtifactNotReady(BuildError):
    """A generated artifact was read before its producer completed."""

    kind = FailureKind.ARTIFACT_NOT_READY


class BuildFailed(BuildError):
    """Raised by the graph when a node fails; names the node and the cause."""

    def __init__(self, node_name: str, cause: BaseException):
        self.node_name = node_name
        self.cause = cause
        self.kind = getattr(cause, "kind", FailureKind.IO_ERROR)
        super().__init__(f"node '{node_name}' failed: {cause}")

