"""
Macro derivation — map the config record onto C macro definitions.

Naming rules, applied per field of ``CONFIG_FIELDS`` in declaration order:
  1. Path fields (``*_dir``) never produce a macro.
  2. Stem = uppercased field name, with the ``_API`` capability suffix or
     the ``_MACRO`` directive suffix stripped.  ``STEM_OVERRIDES`` wins
     over the generic transform.
  3. Classification:
       flag, default true   → OPT_OUT  ``JANET_NO_<stem>=1``  when false
       flag, default false  → OPT_IN   ``JANET_<stem>=1``     when true
       ``*_macro`` field    → HOOK     ``JANET_<stem>(msg)=<value>`` when set
       integer / string     → VALUE    ``JANET_<stem>=<value>``      when set

``MACRO_TABLE`` is computed once at import; a field no rule can classify
raises ConfigurationError there, before any build is planned.
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, List, Optional

from janet_build.core.config import CONFIG_FIELDS, ConfigField, FieldKind, JanetConfig
from janet_build.core.errors import ConfigurationError

MACRO_PREFIX = "JANET_"
BOOTSTRAP_MACRO = "JANET_BOOTSTRAP=1"

PATH_SUFFIX = "_dir"
CAPABILITY_SUFFIX = "_API"
DIRECTIVE_SUFFIX = "_MACRO"

STEM_OVERRIDES: Dict[str, str] = {
    "event_loop": "EV",
    "process_api": "PROCESSES",
}

# Directive fields whose C macro is a plain statement, not function-like.
PLAIN_VALUE_MACROS = frozenset({"out_of_memory_macro"})


@unique
class MacroKind(str, Enum):
    OPT_IN = "opt_in"
    OPT_OUT = "opt_out"
    VALUE = "value"
    HOOK = "hook"


@dataclass(frozen=True)
class MacroDef:
    """Derived macro definition for one config field."""
    field: str
    kind: MacroKind
    template: str    # contains "{value}" for VALUE / HOOK

    def render(self, value: Any) -> Optional[str]:
        """Return the directive for *value*, or None when nothing is emitted."""
        if self.kind == MacroKind.OPT_OUT:
            return None if value else self.template
        if self.kind == MacroKind.OPT_IN:
            return self.template if value else None
        if value is None:
            return None
        return self.template.format(value=value)


def is_path_field(field: ConfigField) -> bool:
    return field.kind == FieldKind.PATH or field.name.endswith(PATH_SUFFIX)


def macro_stem(name: str) -> str:
    """Canonical macro stem for a field name."""
    if name in STEM_OVERRIDES:
        return STEM_OVERRIDES[name]
    stem = name.upper()
    for suffix in (CAPABILITY_SUFFIX, DIRECTIVE_SUFFIX):
        if stem.endswith(suffix):
            return stem[: -len(suffix)]
    return stem


def macro_def(field: ConfigField) -> Optional[MacroDef]:
    """
    Classify *field* into a MacroDef.

    Returns None for path fields.  Raises ConfigurationError when no rule
    matches.
    """
    if is_path_field(field):
        return None

    stem = macro_stem(field.name)

    if field.kind == FieldKind.FLAG:
        if field.default is True:
            return MacroDef(field.name, MacroKind.OPT_OUT, f"{MACRO_PREFIX}NO_{stem}=1")
        if field.default is False:
            return MacroDef(field.name, MacroKind.OPT_IN, f"{MACRO_PREFIX}{stem}=1")
        raise ConfigurationError(f"flag {field.name!r} has no boolean default")

    if field.kind in (FieldKind.INTEGER, FieldKind.STRING):
        hook = (
            field.name.upper().endswith(DIRECTIVE_SUFFIX)
            and field.name not in PLAIN_VALUE_MACROS
        )
        if hook:
            return MacroDef(field.name, MacroKind.HOOK, f"{MACRO_PREFIX}{stem}(msg)={{value}}")
        return MacroDef(field.name, MacroKind.VALUE, f"{MACRO_PREFIX}{stem}={{value}}")

    raise ConfigurationError(f"cannot classify config field {field.name!r} ({field.kind})")


def build_macro_table() -> List[MacroDef]:
    """Classify every non-path field; raises on the first unclassifiable one."""
    table: List[MacroDef] = []
    for f in CONFIG_FIELDS:
        d = macro_def(f)
        if d is not None:
            table.append(d)
    return table


MACRO_TABLE: List[MacroDef] = build_macro_table()


def derive_macros(config: JanetConfig) -> List[str]:
    """
    Compute the macro definitions for *config*.

    Pure and deterministic: the result is in field declaration order and
    identical for identical records.
    """
    macros: List[str] = []
    for d in MACRO_TABLE:
        directive = d.render(getattr(config, d.field))
        if directive is not None:
            macros.append(directive)
    return macros
