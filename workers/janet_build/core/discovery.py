"""
Discovery — non-recursive directory scans for sources and test fixtures.

A directory that was expected to exist but cannot be listed is a
DiscoveryError: a missing test directory must not silently produce an
empty test run.  Results are sorted by name so that plans do not depend
on filesystem enumeration order.
"""
import logging
from pathlib import Path
from typing import List, Tuple, Union

from janet_build.core.errors import DiscoveryError

logger = logging.getLogger(__name__)


def _list_dir(directory: Path) -> List[Path]:
    try:
        return [p for p in directory.iterdir() if p.is_file()]
    except OSError as e:
        raise DiscoveryError(f"cannot scan {directory}: {e}") from e


def discover_sources(directory: Union[str, Path], suffix: str = ".c") -> List[Path]:
    """Absolute paths of every ``*<suffix>`` file directly under *directory*."""
    d = Path(directory).resolve()
    found = sorted(
        (p for p in _list_dir(d) if p.name.endswith(suffix)),
        key=lambda p: p.name,
    )
    logger.debug("found %d %s sources in %s", len(found), suffix, d)
    return found


def discover_fixtures(
    directory: Union[str, Path],
    prefix: str = "suite",
    suffix: str = ".janet",
) -> List[str]:
    """
    File names under *directory* that start with *prefix* and end with
    *suffix*.  Names, not paths: fixtures are run from inside *directory*.
    """
    d = Path(directory)
    names = sorted(
        p.name
        for p in _list_dir(d)
        if p.name.startswith(prefix) and p.name.endswith(suffix)
    )
    logger.debug(f"found {len(names)} test fixtures in {d}")
    return names


def fixture_label(name: str, label_slice: Tuple[int, int] = (5, 9)) -> str:
    """Fixed-width label of a fixture name, e.g. ``suite0001.janet → 0001``."""
    start, stop = label_slice
    return name[start:stop]
