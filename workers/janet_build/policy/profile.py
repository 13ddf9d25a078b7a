"""
Profile — fixed build-policy knobs for the Janet bootstrap pipeline.

Everything the graph needs to know about *where* things live and *how*
they are named is kept here so that the node and graph code contain no
Janet-specific opinions.  Changing the fixture naming or the capture cap
is a profile change, not a code change.
"""
from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass(frozen=True)
class BuildProfile:
    """Layout of a Janet checkout and the fixed policy applied to it."""

    profile_id: str

    # Source layout, relative to the Janet root
    boot_dirs: Tuple[str, ...]
    mainclient_src: str
    include_subdir: str
    conf_subdir: str
    test_subdir: str

    # Artifacts
    bootstrap_name: str = "janet_boot"
    final_name: str = "janet"
    generated_basename: str = "janet.c"
    source_suffix: str = ".c"

    # Flags applied per source file of the bootstrap tool and the amalgamation
    per_file_flags: List[str] = field(default_factory=list)
    link_libs: List[str] = field(default_factory=list)

    # Capture cap for generator stdout (bytes)
    capture_limit: int = 10_000_000

    # Test fixtures: "<prefix>NNNN<suffix>", label is name[start:stop]
    test_prefix: str = "suite"
    test_suffix: str = ".janet"
    label_slice: Tuple[int, int] = (5, 9)

    @classmethod
    def v1(cls) -> "BuildProfile":
        """The locked v1 profile: janet checkout built with a C compiler."""
        return cls(
            profile_id="janet-bootstrap-c-v1",
            boot_dirs=("src/boot", "src/core"),
            mainclient_src="src/mainclient/shell.c",
            include_subdir="src/include",
            conf_subdir="src/conf",
            test_subdir="test",
            per_file_flags=["-fno-sanitize=undefined"],
            link_libs=["-lm", "-lpthread", "-ldl"],
        )
