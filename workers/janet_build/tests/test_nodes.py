"""Tests for node types: generated artifact, compile, capture and run nodes."""
import sys
from pathlib import Path

import pytest

from janet_build.core.capture import GeneratorStep
from janet_build.core.compiler import SourceFile
from janet_build.core.errors import (
    ArtifactNotReady,
    BuildFailed,
    ConfigurationError,
    NonZeroExitError,
    OutputOverflowError,
)
from janet_build.core.graph import BuildGraph
from janet_build.core.macros import BOOTSTRAP_MACRO
from janet_build.core.nodes import (
    ArtifactState,
    BootstrapNode,
    CaptureNode,
    CompileNode,
    GeneratedArtifact,
    GeneratedSource,
    NodeState,
    RunNode,
)


class StaticGenerator(GeneratorStep):
    """Returns fixed bytes without spawning anything."""

    def __init__(self, argv, limit, payload=b"int x;\n"):
        self.argv = argv
        self.limit = limit
        self.payload = payload

    def produce(self) -> bytes:
        return self.payload


class TestGeneratedArtifact:

    def test_unreadable_until_resolved(self, tmp_path: Path):
        art = GeneratedArtifact("janet.c")
        assert art.state == ArtifactState.PENDING
        with pytest.raises(ArtifactNotReady):
            art.content
        with pytest.raises(ArtifactNotReady):
            art.path

    def test_resolve_once(self, tmp_path: Path):
        art = GeneratedArtifact("janet.c")
        art.resolve(b"X", tmp_path / "janet.c")
        assert art.content == b"X"
        with pytest.raises(RuntimeError):
            art.resolve(b"Y", tmp_path / "janet.c")

    def test_failed_stays_unreadable(self):
        art = GeneratedArtifact("janet.c")
        art.fail()
        assert art.state == ArtifactState.FAILED
        with pytest.raises(ArtifactNotReady):
            art.content


class TestCompileNode:

    def test_empty_sources_rejected(self, fake_compiler, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            CompileNode("empty", fake_compiler, [], tmp_path)

    def test_relative_source_rejected(self, fake_compiler, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            CompileNode("rel", fake_compiler, [SourceFile(Path("src/a.c"))], tmp_path)

    def test_bootstrap_macro_appended(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        src = SourceFile(janet_tree / "src" / "boot" / "boot.c")
        node = BootstrapNode("janet_boot", fake_compiler, [src], tmp_path, defines=["JANET_DEBUG=1"])
        assert node.defines == ("JANET_DEBUG=1", BOOTSTRAP_MACRO)

    def test_executable_unavailable_before_run(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        src = SourceFile(janet_tree / "src" / "boot" / "boot.c")
        node = CompileNode("janet_boot", fake_compiler, [src], tmp_path)
        with pytest.raises(ArtifactNotReady):
            node.executable

    def test_generated_source_before_capture(self, fake_compiler, tmp_path: Path):
        node = CompileNode("janet", fake_compiler, [GeneratedSource(GeneratedArtifact("janet.c"))], tmp_path)
        with pytest.raises(ArtifactNotReady):
            node.run()


class TestCaptureNode:

    def _boot(self, fake_compiler, janet_tree: Path, out: Path) -> CompileNode:
        src = SourceFile(janet_tree / "src" / "boot" / "boot.c")
        return BootstrapNode("janet_boot", fake_compiler, [src], out)

    def test_writes_and_resolves(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        boot = self._boot(fake_compiler, janet_tree, tmp_path)
        art = GeneratedArtifact("janet.c")
        capture = CaptureNode("capture", boot, [janet_tree], art, tmp_path / "gen")
        BuildGraph().execute([capture])

        assert art.state == ArtifactState.READY
        assert art.path == tmp_path / "gen" / "janet.c"
        assert art.path.read_bytes() == art.content
        assert b"amalgamated" in art.content
        assert capture.output_path == art.path

    def test_generator_factory_receives_argv(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        seen = {}

        def factory(argv, limit):
            seen["argv"], seen["limit"] = argv, limit
            return StaticGenerator(argv, limit)

        boot = self._boot(fake_compiler, janet_tree, tmp_path)
        art = GeneratedArtifact("janet.c")
        capture = CaptureNode("capture", boot, [janet_tree], art, tmp_path / "gen",
                              limit=123, generator_factory=factory)
        BuildGraph().execute([capture])
        assert seen["argv"] == [str(boot.executable), str(janet_tree)]
        assert seen["limit"] == 123
        assert art.content == b"int x;\n"

    def test_failure_exposes_nothing(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        fake_compiler.scripts["janet_boot"] = "import sys\nsys.stdout.write('half')\nsys.exit(1)\n"
        boot = self._boot(fake_compiler, janet_tree, tmp_path)
        art = GeneratedArtifact("janet.c")
        gen_dir = tmp_path / "gen"
        capture = CaptureNode("capture", boot, [janet_tree], art, gen_dir)
        final = CompileNode("janet", fake_compiler, [GeneratedSource(art)], tmp_path).depend_on(capture)

        with pytest.raises(BuildFailed) as exc:
            BuildGraph().execute([final])
        assert exc.value.node_name == "capture"
        assert isinstance(exc.value.cause, NonZeroExitError)
        assert art.state == ArtifactState.FAILED
        assert final.state == NodeState.CANCELLED
        assert not (gen_dir / "janet.c").exists()
        assert [c["name"] for c in fake_compiler.calls] == ["janet_boot"]

    def test_overflow_exposes_nothing(self, fake_compiler, janet_tree: Path, tmp_path: Path):
        fake_compiler.scripts["janet_boot"] = "import sys\nsys.stdout.write('z' * 5000)\n"
        boot = self._boot(fake_compiler, janet_tree, tmp_path)
        art = GeneratedArtifact("janet.c")
        capture = CaptureNode("capture", boot, [janet_tree], art, tmp_path / "gen", limit=4096)
        with pytest.raises(BuildFailed) as exc:
            BuildGraph().execute([capture])
        assert isinstance(exc.value.cause, OutputOverflowError)
        assert not (tmp_path / "gen" / "janet.c").exists()


class TestRunNode:

    def test_success(self, tmp_path: Path):
        node = RunNode("ok", Path(sys.executable), ["-c", "pass"], cwd=tmp_path)
        node.run()
        assert node.returncode == 0

    def test_cwd_and_argument(self, tmp_path: Path):
        (tmp_path / "suite0001.janet").write_text("")
        code = "import os, sys; sys.exit(0 if os.path.exists(sys.argv[1]) else 3)"
        node = RunNode("cwd", Path(sys.executable), ["-c", code, "suite0001.janet"], cwd=tmp_path)
        node.run()
        assert node.returncode == 0

    def test_non_zero_exit(self, tmp_path: Path):
        code = "import sys; sys.stderr.write('boom'); sys.exit(4)"
        node = RunNode("bad", Path(sys.executable), ["-c", code], suppress_stderr=True)
        with pytest.raises(NonZeroExitError) as exc:
            node.run()
        assert exc.value.returncode == 4
