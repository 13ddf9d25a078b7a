"""
Config model — the typed Janet configuration record.

Responsibilities:
  - Declare every janetconf option once, in a fixed order, with its kind,
    record default, CLI option name and help text (``CONFIG_FIELDS``).
  - Hold one immutable ``JanetConfig`` per build invocation.
  - Build that record from CLI-style options exactly once.

The declaration table is the single source of truth for field order;
``validate_field_table`` checks at import time that the pydantic model
and the table agree, so a drift is caught before any build runs.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from janet_build.core.errors import ConfigurationError

U32_MAX = 2**32 - 1

U32 = Annotated[int, Field(ge=0, le=U32_MAX)]


class FieldKind(str, Enum):
    PATH = "path"
    FLAG = "flag"
    INTEGER = "integer"
    STRING = "string"


class ReleaseMode(str, Enum):
    """Optimization mode, mirrors the standard release options."""
    DEBUG = "Debug"
    RELEASE_SAFE = "ReleaseSafe"
    RELEASE_FAST = "ReleaseFast"
    RELEASE_SMALL = "ReleaseSmall"

    def to_flags(self) -> List[str]:
        """Convert to compiler flags"""
        return {
            ReleaseMode.DEBUG: ["-O0", "-g"],
            ReleaseMode.RELEASE_SAFE: ["-O2", "-g"],
            ReleaseMode.RELEASE_FAST: ["-O3"],
            ReleaseMode.RELEASE_SMALL: ["-Os"],
        }[self]


@dataclass(frozen=True)
class ConfigField:
    """One declared option of the configuration record."""
    name: str
    kind: FieldKind
    default: Optional[bool] = None   # record default, flags only
    option: Optional[str] = None     # CLI option name, None if not user-settable
    help: str = ""

    @property
    def inverted(self) -> bool:
        """True when the CLI option disables the feature (``no-*``)."""
        return self.option is not None and self.option.startswith("no-")


def _path(name: str) -> ConfigField:
    return ConfigField(name, FieldKind.PATH)


def _flag(name: str, default: bool, option: Optional[str], help: str) -> ConfigField:
    return ConfigField(name, FieldKind.FLAG, default, option, help)


def _int(name: str, option: str, help: str) -> ConfigField:
    return ConfigField(name, FieldKind.INTEGER, None, option, help)


def _str(name: str, option: str, help: str) -> ConfigField:
    return ConfigField(name, FieldKind.STRING, None, option, help)


# =============================================================================
# Declaration table (order is the macro emission order)
# =============================================================================

CONFIG_FIELDS: Tuple[ConfigField, ...] = (
    # The path in which the Janet repository is checked out
    _path("root_dir"),
    # The directory containing janet.h
    _path("include_dir"),
    # The directory containing janetconf.h
    _path("conf_dir"),

    # ===[Linking-related options]===
    _flag("single_threaded", False, "single-threaded", "Create a single threaded build"),
    _flag("dynamic_modules", True, "dynamic-modules", "Build with dynamic module support"),
    _flag("nanbox", True, "no-nanbox", "Disable nanboxing for Janet values"),

    # ===[Non-standard options]===
    _flag("reduced_os", False, "reduced-os", "Reduce reliance on OS-specific APIs"),
    _flag("docstrings", True, "no-docstrings", "Do not include docstrings in the core image"),
    _flag("sourcemaps", True, "no-sourcemaps", "Do not include sourcemaps in the core image"),
    _flag("assembler", True, "no-assembler", "Do not include the Janet bytecode assembly API"),
    _flag("typed_array", True, "no-typed-array", "Do not include the Janet typed array API"),
    _flag("int_types", True, "no-int-types", "Do not include the Janet integer types"),
    _flag("process_api", True, "no-process-api", "Do not include the Janet process API"),
    _flag("peg_api", True, "no-peg-api", "Do not include the Janet PEG API"),
    _flag("net_api", True, "no-net-api", "Do not include the Janet network API"),
    _flag("event_loop", True, "no-event-loop", "Do not include the Janet event loop"),
    _flag("realpath", True, "no-realpath", "Do not support realpath system call"),
    _flag("symlinks", True, "no-symlinks", "Do not support symlinks"),
    _flag("umask", True, "no-umask", "Do not support setting umask"),

    # ===[Miscellaneous options]===
    _flag("debug", False, None, "Set from the release mode"),
    _flag("prf", False, "prf-hash", "Enable PRF hash function"),
    _flag("utc_mktime", True, "no-utc-mktime", "Do not use UTC with mktime"),
    _flag("ev_epoll", False, "use-epoll", "Use epoll in the event loop"),
    _int("recursion_guard", "recursion-guard", "Max recursion (default: 1024)"),
    _int("max_proto_depth", "max-proto-depth", "Max prototype depth (default: 200)"),
    _int("max_macro_expand", "max-macro-expand", "Maximum macro expansion (default: 200)"),
    _str("top_level_signal_macro", "top-level-signal-macro", "Macro used to process top level signals"),
    _str("out_of_memory_macro", "out-of-memory-macro", "Macro used on out-of-memory condition"),
    _str("exit_macro", "assert-fail-macro", "Macro used to exit on assertion failure"),
    _int("stack_max", "stack-max", "Maximum number of Janet values in stack (default: 16384)"),
    _str("os_name", "os_name", "Override OS name (default: based on target)"),
    _str("arch_name", "arch_name", "Override arch name (default: based on target)"),

    # ===[Main client options]===
    _flag("simple_getline", False, "simple-getline", "Use simple getline API in the main client"),
)

# Options whose CLI default differs from the record default.
CLI_DEFAULTS = {
    "dynamic-modules": False,
}


class JanetConfig(BaseModel):
    """Janet configuration (corresponds to options available in janetconf.h)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_dir: str
    include_dir: str
    conf_dir: str

    single_threaded: bool = False
    dynamic_modules: bool = True
    nanbox: bool = True

    reduced_os: bool = False
    docstrings: bool = True
    sourcemaps: bool = True
    assembler: bool = True
    typed_array: bool = True
    int_types: bool = True
    process_api: bool = True
    peg_api: bool = True
    net_api: bool = True
    event_loop: bool = True
    realpath: bool = True
    symlinks: bool = True
    umask: bool = True

    debug: bool = False
    prf: bool = False
    utc_mktime: bool = True
    ev_epoll: bool = False
    recursion_guard: Optional[U32] = None
    max_proto_depth: Optional[U32] = None
    max_macro_expand: Optional[U32] = None
    top_level_signal_macro: Optional[str] = None
    out_of_memory_macro: Optional[str] = None
    exit_macro: Optional[str] = None
    stack_max: Optional[U32] = None
    os_name: Optional[str] = None
    arch_name: Optional[str] = None

    simple_getline: bool = False

    @classmethod
    def for_root(
        cls,
        root_dir: Union[str, Path],
        include_subdir: str = "src/include",
        conf_subdir: str = "src/conf",
        **values: Any,
    ) -> "JanetConfig":
        """Record rooted at *root_dir* with the include/conf dirs derived."""
        root = Path(root_dir).resolve()
        return cls(
            root_dir=str(root),
            include_dir=str(root / include_subdir),
            conf_dir=str(root / conf_subdir),
            **values,
        )

    @classmethod
    def options(
        cls,
        root_dir: Union[str, Path],
        options: Mapping[str, Any],
        mode: ReleaseMode = ReleaseMode.DEBUG,
        include_subdir: str = "src/include",
        conf_subdir: str = "src/conf",
    ) -> "JanetConfig":
        """
        Build the record from CLI-style options keyed by option name.

        ``no-*`` options invert into the positive field; unset options fall
        back to the CLI default (``False`` for every flag).  ``debug`` is
        derived from *mode*.  The include and conf dirs are *root_dir*
        joined with *include_subdir* and *conf_subdir*.
        """
        values: dict = {}
        for f in CONFIG_FIELDS:
            if f.kind == FieldKind.PATH or f.option is None:
                continue
            raw = options.get(f.option)
            if f.kind == FieldKind.FLAG:
                given = CLI_DEFAULTS.get(f.option, False) if raw is None else bool(raw)
                values[f.name] = not given if f.inverted else given
            elif raw is not None:
                values[f.name] = raw
        values["debug"] = mode == ReleaseMode.DEBUG
        return cls.for_root(root_dir, include_subdir, conf_subdir, **values)


def validate_field_table() -> None:
    """
    Check that ``CONFIG_FIELDS`` and ``JanetConfig`` declare the same fields
    in the same order with the same flag defaults.

    Raises ConfigurationError on any mismatch.
    """
    model_fields = JanetConfig.model_fields
    declared = [f.name for f in CONFIG_FIELDS]
    if declared != list(model_fields):
        raise ConfigurationError(
            f"config table out of sync with JanetConfig: {declared} != {list(model_fields)}"
        )
    for f in CONFIG_FIELDS:
        info = model_fields[f.name]
        if f.kind == FieldKind.FLAG:
            if not isinstance(f.default, bool) or info.default is not f.default:
                raise ConfigurationError(
                    f"flag {f.name!r}: table default {f.default!r} != model default {info.default!r}"
                )
        elif f.kind in (FieldKind.INTEGER, FieldKind.STRING):
            if info.default is not None:
                raise ConfigurationError(f"optional field {f.name!r} must default to None")


validate_field_table()
