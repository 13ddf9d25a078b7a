"""
Shared pytest fixtures for janet_build tests.

Provides:
  - a fake Janet checkout in tmp_path (boot/core sources, shell.c,
    include/conf dirs, test fixtures);
  - FakeCompiler, which "links" each executable as a small Python script,
    so the whole graph (capture, run, test) executes without a C toolchain;
  - a real C checkout plus ``gcc_ok`` for the end-to-end compiler test.

The real-compiler tests are skipped when gcc is not installed.
"""
import os
import shutil
import stat
import sys
import textwrap
from pathlib import Path
from typing import Dict, List, Sequence, Set

import pytest

from janet_build.core.compiler import Compiler, SourceFile
from janet_build.core.config import JanetConfig
from janet_build.core.errors import CompilationError

# What the fake janet_boot prints as the amalgamated source.
GENERATED_SOURCE = "/* amalgamated janet.c */\nint janet_entry(void) { return 0; }\n"

BOOT_SCRIPT = textwrap.dedent(f"""\
    import sys
    if len(sys.argv) != 2:
        sys.exit(2)
    sys.stdout.write({GENERATED_SOURCE!r})
""")

# Fake interpreter: fails a fixture whose contents mention FAIL,
# "--exit N" exits with N, anything else succeeds.
JANET_SCRIPT = textwrap.dedent("""\
    import os
    import sys
    args = sys.argv[1:]
    if args[:1] == ["--exit"]:
        sys.exit(int(args[1]))
    if args and os.path.exists(args[0]):
        with open(args[0]) as f:
            sys.exit(1 if "FAIL" in f.read() else 0)
    sys.exit(0)
""")


class FakeCompiler(Compiler):
    """Records every build request and emits an executable Python script."""

    def __init__(self) -> None:
        self.calls: List[Dict] = []
        self.scripts: Dict[str, str] = {
            "janet_boot": BOOT_SCRIPT,
            "janet": JANET_SCRIPT,
        }
        self.fail: Set[str] = set()

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
        self.calls.append({
            "name": name,
            "sources": list(sources),
            "include_dirs": list(include_dirs),
            "defines": list(defines),
            "flags": list(flags),
            "link_libs": list(link_libs),
            "strip": strip,
        })
        for s in sources:
            assert s.path.exists(), f"missing source {s.path}"
        if name in self.fail:
            raise CompilationError(["fakecc", name], 1, f"{name}: error: injected failure")

        bin_dir = output_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        exe = bin_dir / name
        body = self.scripts.get(name, "import sys\nsys.exit(0)\n")
        exe.write_text(f"#!{sys.executable}\n{body}")
        exe.chmod(exe.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return exe

    def call(self, name: str) -> Dict:
        return next(c for c in self.calls if c["name"] == name)


def _write(root: Path, rel: str, content: str = "") -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)
    return p


@pytest.fixture
def janet_tree(tmp_path) -> Path:
    """A minimal Janet checkout layout with two passing test suites."""
    root = tmp_path / "janet"
    _write(root, "src/boot/boot.c", "/* boot */\n")
    _write(root, "src/core/vm.c", "/* vm */\n")
    _write(root, "src/core/gc.c", "/* gc */\n")
    _write(root, "src/core/README", "not a source\n")
    _write(root, "src/include/janet.h", "/* janet.h */\n")
    _write(root, "src/conf/janetconf.h", "/* janetconf.h */\n")
    _write(root, "src/mainclient/shell.c", "/* shell */\n")
    _write(root, "test/suite0001.janet", "(assert true)\n")
    _write(root, "test/suite0002.janet", "(assert true)\n")
    _write(root, "test/helper.janet", "(def x 1)\n")
    _write(root, "test/suite0003.txt", "not a suite\n")
    return root


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    if os.name == "nt":
        pytest.skip("fake executables rely on shebang scripts")
    return FakeCompiler()


@pytest.fixture
def default_config(janet_tree) -> JanetConfig:
    return JanetConfig.for_root(janet_tree)


@pytest.fixture
def build_dir(tmp_path) -> Path:
    return tmp_path / "build"


# ── Real C sources for the gcc end-to-end test ──────────────────────────────

C_BOOT = textwrap.dedent(r"""
    #include <stdio.h>

    #ifndef JANET_BOOTSTRAP
    #error "bootstrap macro missing"
    #endif

    int janet_core_helper(void);

    int main(int argc, char **argv) {
        if (argc != 2) return 2;
        fputs("#include <stdio.h>\n", stdout);
        fputs("int janet_entry(const char *path) {\n", stdout);
        fputs("    FILE *f = fopen(path, \"r\");\n", stdout);
        fputs("    if (!f) return 1;\n", stdout);
        fputs("    fclose(f);\n", stdout);
        fputs("    return 0;\n", stdout);
        fputs("}\n", stdout);
        return janet_core_helper();
    }
""")

C_CORE = textwrap.dedent(r"""
    int janet_core_helper(void) { return 0; }
""")

C_SHELL = textwrap.dedent(r"""
    #ifdef JANET_BOOTSTRAP
    #error "bootstrap macro leaked into the final artifact"
    #endif

    #if defined(JANET_RECURSION_GUARD) && JANET_RECURSION_GUARD != 42
    #error "unexpected recursion guard"
    #endif

    int janet_entry(const char *path);

    int main(int argc, char **argv) {
        if (argc < 2) return 0;
        return janet_entry(argv[1]);
    }
""")


@pytest.fixture(scope="session")
def gcc_ok():
    """Skip tests if gcc is not available."""
    if shutil.which("gcc") is None:
        pytest.skip("gcc not available - install gcc to run these tests")


@pytest.fixture
def c_janet_tree(tmp_path, gcc_ok) -> Path:
    """A Janet-shaped checkout whose sources really compile."""
    root = tmp_path / "cjanet"
    _write(root, "src/boot/boot.c", C_BOOT)
    _write(root, "src/core/helper.c", C_CORE)
    _write(root, "src/mainclient/shell.c", C_SHELL)
    (root / "src/include").mkdir(parents=True)
    (root / "src/conf").mkdir(parents=True)
    _write(root, "test/suite0001.janet", "(assert true)\n")
    _write(root, "test/suite0002.janet", "(assert true)\n")
    return root
