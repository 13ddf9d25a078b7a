"""
Compiler — the host C compiler as seen by compile nodes.

The graph only needs "turn these sources, include dirs and macro
definitions into an executable".  ``CCompiler`` does that the usual way:
every source is compiled to its own object (so per-file flags apply to
that file only), then all objects are linked.
"""
import logging
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from janet_build.core.errors import CompilationError, SpawnError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """An absolute source path plus flags that apply to that file only."""
    path: Path
    flags: List[str] = field(default_factory=list)


class Compiler(ABC):
    """Builds one executable from a set of sources."""

    @abstractmethod
    def build_executable(
        self,
        name: str,
        sources: Sequence[SourceFile],
        include_dirs: Sequence[str],
        defines: Sequence[str],
        flags: Sequence[str],
        link_libs: Sequence[str],
        output_dir: Path,
        strip: bool = False,
    ) -> Path:
        """Return the path of the linked executable; raise CompilationError."""


class CCompiler(Compiler):
    """gcc/clang compatible driver: ``cc -c`` per source, then one link."""

    def __init__(self, cc: str = "cc"):
        self.cc = cc

    def _run(self, cmd: List[str]) -> None:
        logger.debug(" ".join(cmd))
        t0 = time.monotonic()
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise SpawnError(cmd, e) from e
        duration = int((time.monotonic() - t0) * 1000)
        if result.stderr:
            # warnings are kept visible even on success
            logger.warning(result.stderr.rstrip())
        if result.returncode != 0:
            raise CompilationError(cmd, result.returncode, result.stderr)
        logger.debug(f"{cmd[-1]} done in {duration}ms")

    def compile_command(
        self,
        source: SourceFile,
        obj: Path,
        include_dirs: Sequence[str],
        defines: Sequence[str],
        flags: Sequence[str],
    ) -> List[str]:
        cmd = [self.cc] + list(flags) + list(source.flags)
        for inc in include_dirs:
            cmd += ["-I", str(inc)]
        cmd += [f"-D{d}" for d in defines]
        cmd += ["-c", str(source.path), "-o", str(obj)]
        return cmd

    def link_command(
        self,
        objects: Sequence[Path],
        exe: Path,
        flags: Sequence[str],
        link_libs: Sequence[str],
        strip: bool,
    ) -> List[str]:
        cmd = [self.cc] + list(flags)
        if strip:
            cmd.append("-s")
        cmd += [str(o) for o in objects]
        cmd += ["-o", str(exe)]
        cmd += list(link_libs)
        return cmd

    def build_executable(
        self,
        name: str,
        sources: Sequence[SourceFile],
        include_dirs: Sequence[str],
        defines: Sequence[str],
        flags: Sequence[str],
        link_libs: Sequence[str],
        output_dir: Path,
        strip: bool = False,
    ) -> Path:
        obj_dir = output_dir / "obj" / name
        bin_dir = output_dir / "bin"
        obj_dir.mkdir(parents=True, exist_ok=True)
        bin_dir.mkdir(parents=True, exist_ok=True)

        objects: List[Path] = []
        for i, src in enumerate(sources):
            # index prefix keeps same-named files from different dirs apart
            obj = obj_dir / f"{i:03d}_{src.path.stem}.o"
            self._run(self.compile_command(src, obj, include_dirs, defines, flags))
            objects.append(obj)

        exe = bin_dir / name
        self._run(self.link_command(objects, exe, flags, link_libs, strip))
        logger.info(f"linked {exe} ({len(objects)} objects)")
        return exe
