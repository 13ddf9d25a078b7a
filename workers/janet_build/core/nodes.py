"""
Nodes — the typed units of work of a build graph.

  CompileNode    sources + include dirs + macros → executable (via Compiler)
  BootstrapNode  CompileNode for the generator tool (adds JANET_BOOTSTRAP=1)
  CaptureNode    run a compiled tool, store its stdout as a GeneratedArtifact
  RunNode        run an executable, succeed only on exit code 0
  LogNode        report-only line emitted after its dependency succeeded

Nodes are built once per plan and only read after construction; the one
piece of state handed between them is the ``GeneratedArtifact``, which
has a single writer (its CaptureNode) and is unreadable until resolved.
"""
import logging
import os
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, unique
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from janet_build.core.capture import DEFAULT_CAPTURE_LIMIT, GeneratorStep, ProcessGenerator
from janet_build.core.compiler import Compiler, SourceFile
from janet_build.core.errors import (
    ArtifactNotReady,
    ConfigurationError,
    NonZeroExitError,
    SpawnError,
)
from janet_build.core.macros import BOOTSTRAP_MACRO

logger = logging.getLogger(__name__)


@unique
class NodeState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Node(ABC):
    """A graph node: dependencies plus one action."""

    kind = "node"

    def __init__(self, name: str):
        self.name = name
        self.dependencies: List["Node"] = []
        self.state = NodeState.PENDING
        self.error: Optional[BaseException] = None
        self.duration_ms: Optional[int] = None

    def depend_on(self, *nodes: "Node") -> "Node":
        for n in nodes:
            if n is self:
                raise ConfigurationError(f"node {self.name!r} cannot depend on itself")
            if n not in self.dependencies:
                self.dependencies.append(n)
        return self

    @abstractmethod
    def run(self) -> None:
        """Perform the action; raise a BuildError on failure."""

    def cancel(self) -> None:
        """Abort a running action (best effort). Default: nothing to abort."""

    @property
    def output_path(self) -> Optional[Path]:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} {self.state.value}>"


# =============================================================================
# Generated artifact
# =============================================================================

@unique
class ArtifactState(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    FAILED = "FAILED"


class GeneratedArtifact:
    """
    Captured generator output, readable only once its producer succeeded.

    PENDING → READY (content + file on disk) or PENDING → FAILED.
    """

    def __init__(self, basename: str):
        self.basename = basename
        self._state = ArtifactState.PENDING
        self._content: Optional[bytes] = None
        self._path: Optional[Path] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ArtifactState:
        return self._state

    def resolve(self, content: bytes, path: Path) -> None:
        with self._lock:
            if self._state != ArtifactState.PENDING:
                raise RuntimeError(f"artifact {self.basename} already {self._state.value}")
            self._content = content
            self._path = path
            self._state = ArtifactState.READY

    def fail(self) -> None:
        with self._lock:
            if self._state == ArtifactState.PENDING:
                self._state = ArtifactState.FAILED

    def _require_ready(self) -> None:
        if self._state != ArtifactState.READY:
            raise ArtifactNotReady(
                f"generated artifact {self.basename} is {self._state.value}"
            )

    @property
    def content(self) -> bytes:
        self._require_ready()
        assert self._content is not None
        return self._content

    @property
    def path(self) -> Path:
        self._require_ready()
        assert self._path is not None
        return self._path


@dataclass(frozen=True)
class GeneratedSource:
    """A compile input that only exists once its artifact is resolved."""
    artifact: GeneratedArtifact
    flags: List[str] = field(default_factory=list)


CompileInput = Union[SourceFile, GeneratedSource]


# =============================================================================
# Compile nodes
# =============================================================================

class CompileNode(Node):
    """Compile a fixed set of sources into one executable."""

    kind = "compile"

    def __init__(
        self,
        name: str,
        compiler: Compiler,
        sources: Sequence[CompileInput],
        output_dir: Path,
        include_dirs: Sequence[str] = (),
        defines: Sequence[str] = (),
        flags: Sequence[str] = (),
        link_libs: Sequence[str] = (),
        strip: bool = False,
    ):
        super().__init__(name)
        if not sources:
            raise ConfigurationError(f"compile node {name!r} has no sources")
        for s in sources:
            if isinstance(s, SourceFile) and not s.path.is_absolute():
                raise ConfigurationError(f"source path must be absolute: {s.path}")
        self.compiler = compiler
        self.sources = tuple(sources)
        self.output_dir = output_dir
        self.include_dirs = tuple(include_dirs)
        self.defines = tuple(defines)
        self.flags = tuple(flags)
        self.link_libs = tuple(link_libs)
        self.strip = strip
        self._exe: Optional[Path] = None

    def resolved_sources(self) -> List[SourceFile]:
        out: List[SourceFile] = []
        for s in self.sources:
            if isinstance(s, GeneratedSource):
                out.append(SourceFile(s.artifact.path, list(s.flags)))
            else:
                out.append(s)
        return out

    def run(self) -> None:
        sources = self.resolved_sources()
        logger.info(f"compiling {self.name} from {len(sources)} sources")
        self._exe = self.compiler.build_executable(
            name=self.name,
            sources=sources,
            include_dirs=self.include_dirs,
            defines=self.defines,
            flags=self.flags,
            link_libs=self.link_libs,
            output_dir=self.output_dir,
            strip=self.strip,
        )

    @property
    def output_path(self) -> Optional[Path]:
        return self._exe

    @property
    def executable(self) -> Path:
        if self._exe is None:
            raise ArtifactNotReady(f"{self.name} has not been built")
        return self._exe


class BootstrapNode(CompileNode):
    """The generator tool; compiled with the bootstrap macro added."""

    kind = "bootstrap"

    def __init__(self, name: str, compiler: Compiler, sources: Sequence[CompileInput],
                 output_dir: Path, defines: Sequence[str] = (), **kwargs):
        super().__init__(
            name, compiler, sources, output_dir,
            defines=list(defines) + [BOOTSTRAP_MACRO],
            **kwargs,
        )


# =============================================================================
# Capture node
# =============================================================================

GeneratorFactory = Callable[[List[str], int], GeneratorStep]


class CaptureNode(Node):
    """
    Run *tool* with *args*, write its stdout to ``<output_dir>/<basename>``
    and resolve *artifact*.  The file is written atomically, so a failed
    capture leaves no partial source behind.
    """

    kind = "capture"

    def __init__(
        self,
        name: str,
        tool: CompileNode,
        args: Sequence[str],
        artifact: GeneratedArtifact,
        output_dir: Path,
        limit: int = DEFAULT_CAPTURE_LIMIT,
        generator_factory: GeneratorFactory = ProcessGenerator,
    ):
        super().__init__(name)
        self.tool = tool
        self.args = [str(a) for a in args]
        self.artifact = artifact
        self.output_dir = output_dir
        self.limit = limit
        self.generator_factory = generator_factory
        self._generator: Optional[GeneratorStep] = None
        self.depend_on(tool)

    def run(self) -> None:
        argv = [str(self.tool.executable)] + self.args
        # a previous run's output must not survive a failed capture
        stale = self.output_dir / self.artifact.basename
        if stale.exists():
            stale.unlink()
        self._generator = self.generator_factory(argv, self.limit)
        try:
            data = self._generator.produce()
            path = self._write(data)
        except BaseException:
            self.artifact.fail()
            raise
        finally:
            self._generator = None
        self.artifact.resolve(data, path)
        logger.info(f"generated {path} ({len(data)} bytes)")

    def _write(self, data: bytes) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        dest = self.output_dir / self.artifact.basename
        fd, tmp = tempfile.mkstemp(dir=self.output_dir, prefix=f".{self.artifact.basename}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, dest)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return dest

    def cancel(self) -> None:
        gen = self._generator
        if gen is not None:
            gen.cancel()

    @property
    def output_path(self) -> Optional[Path]:
        if self.artifact.state == ArtifactState.READY:
            return self.artifact.path
        return None


# =============================================================================
# Run / log nodes
# =============================================================================

class RunNode(Node):
    """Run an executable; success means exit code 0."""

    kind = "run"

    def __init__(
        self,
        name: str,
        target: Union[CompileNode, Path],
        args: Sequence[str] = (),
        cwd: Optional[Path] = None,
        suppress_stderr: bool = False,
    ):
        super().__init__(name)
        self.target = target
        self.args = [str(a) for a in args]
        self.cwd = cwd
        self.suppress_stderr = suppress_stderr
        self.returncode: Optional[int] = None
        self._cancelled = False
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        if isinstance(target, CompileNode):
            self.depend_on(target)

    @property
    def executable(self) -> Path:
        if isinstance(self.target, CompileNode):
            return self.target.executable
        return self.target

    def run(self) -> None:
        argv = [str(self.executable)] + self.args
        logger.debug(f"running {' '.join(argv)} (cwd={self.cwd})")
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(self.cwd) if self.cwd is not None else None,
                stderr=subprocess.DEVNULL if self.suppress_stderr else None,
            )
        except OSError as e:
            raise SpawnError(argv, e) from e
        with self._lock:
            self._proc = proc
            if self._cancelled:
                proc.kill()
        try:
            self.returncode = proc.wait()
        finally:
            with self._lock:
                self._proc = None
        if self.returncode != 0:
            raise NonZeroExitError(argv, self.returncode)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            proc = self._proc
        if proc is not None and proc.poll() is None:
            logger.info(f"killing {self.name} (pid {proc.pid})")
            try:
                proc.kill()
            except OSError:
                pass


class LogNode(Node):
    """Emit a fixed message once the dependency has succeeded."""

    kind = "log"

    def __init__(self, name: str, message: str):
        super().__init__(name)
        self.message = message

    def run(self) -> None:
        logger.info(self.message.rstrip("\n"))
