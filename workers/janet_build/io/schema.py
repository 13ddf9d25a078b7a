"""
Schema — Pydantic models for the build report.

One output per invocation:
  build_report.json — requested step, derived macros, and one record per
                      executed node with its state and failure cause.

Runtime contract fields (present in every output):
  package_name, builder_version, profile_id, schema_version.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from janet_build import BUILDER_VERSION, PACKAGE_NAME, SCHEMA_VERSION


class NodeRecord(BaseModel):
    """Outcome of one graph node."""

    name: str
    kind: str                      # compile | bootstrap | capture | run | log | step
    state: str                     # PENDING | RUNNING | SUCCESS | FAILED | CANCELLED
    duration_ms: Optional[int] = None
    output_path: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)

    failure_kind: Optional[str] = None
    error: Optional[str] = None


class BuildReport(BaseModel):
    """Invocation-level summary — build_report.json."""

    package_name: str = PACKAGE_NAME
    builder_version: str = BUILDER_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    step: str
    root_dir: str
    release_mode: str
    macros: List[str] = Field(default_factory=list)

    status: str                    # SUCCESS | FAILED
    failed_node: Optional[str] = None
    failure_kind: Optional[str] = None
    error: Optional[str] = None

    nodes: List[NodeRecord] = Field(default_factory=list)
    tests_run: int = 0

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
