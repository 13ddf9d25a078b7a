"""
Build runner — top-level orchestration: config → graph → report.

This module ties the config record, macro derivation, the node types and
the graph together:

    janet_boot (bootstrap) → janet.c (capture) → janet (amalgamation)
                                                   ├─ run  [args…]
                                                   └─ test suite*.janet …

``run_build`` can be called from tests or other tools; ``main`` is the
CLI entry point.
"""
import argparse
import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from janet_build.core.config import (
    CONFIG_FIELDS,
    FieldKind,
    JanetConfig,
    ReleaseMode,
)
from janet_build.core.capture import ProcessGenerator
from janet_build.core.compiler import CCompiler, Compiler, SourceFile
from janet_build.core.discovery import discover_fixtures, discover_sources, fixture_label
from janet_build.core.errors import BuildError, BuildFailed
from janet_build.core.graph import BuildGraph
from janet_build.core.macros import derive_macros
from janet_build.core.nodes import (
    BootstrapNode,
    CaptureNode,
    CompileNode,
    GeneratedArtifact,
    GeneratedSource,
    GeneratorFactory,
    LogNode,
    NodeState,
    RunNode,
)
from janet_build.io.schema import BuildReport, NodeRecord
from janet_build.io.writer import write_report
from janet_build.policy.profile import BuildProfile
from janet_build.settings import BuildSettings

logger = logging.getLogger(__name__)

STEPS = ("build", "run", "test")


@dataclass
class BuildPlan:
    """The graph of one invocation and its well-known nodes."""
    graph: BuildGraph
    config: JanetConfig
    macros: List[str]
    artifact: GeneratedArtifact
    bootstrap: BootstrapNode
    capture: CaptureNode
    amalgamation: CompileNode
    run: Optional[RunNode] = None
    tests: List[RunNode] = field(default_factory=list)


def plan_build(
    config: JanetConfig,
    compiler: Compiler,
    build_dir: Path,
    profile: Optional[BuildProfile] = None,
    mode: ReleaseMode = ReleaseMode.DEBUG,
    strip: bool = False,
    run_args: Sequence[str] = (),
    with_tests: bool = False,
    capture_limit: Optional[int] = None,
    generator_factory: GeneratorFactory = ProcessGenerator,
) -> BuildPlan:
    """
    Construct the build graph for *config*.

    Source discovery happens here, once.  Test fixtures are only
    discovered when *with_tests* is set; a missing test directory then
    raises DiscoveryError.
    """
    if profile is None:
        profile = BuildProfile.v1()
    if capture_limit is None:
        capture_limit = profile.capture_limit

    root = Path(config.root_dir)
    build_dir = build_dir.resolve()
    macros = derive_macros(config)
    include_dirs = [config.include_dir, config.conf_dir]
    flags = mode.to_flags()
    graph = BuildGraph()

    # ── Bootstrap tool ───────────────────────────────────────────────
    boot_sources: List[SourceFile] = []
    for rel in profile.boot_dirs:
        for path in discover_sources(root / rel, profile.source_suffix):
            boot_sources.append(SourceFile(path, list(profile.per_file_flags)))

    bootstrap = BootstrapNode(
        profile.bootstrap_name,
        compiler,
        boot_sources,
        build_dir,
        defines=macros,
        include_dirs=include_dirs,
        flags=flags,
        link_libs=profile.link_libs,
    )

    # ── Capture: janet_boot <root> > janet.c ─────────────────────────
    artifact = GeneratedArtifact(profile.generated_basename)
    capture = CaptureNode(
        f"capture {profile.generated_basename}",
        bootstrap,
        [str(root)],
        artifact,
        build_dir / "gen",
        limit=capture_limit,
        generator_factory=generator_factory,
    )

    # ── Amalgamation: janet.c + shell.c → janet ──────────────────────
    amalgamation = CompileNode(
        profile.final_name,
        compiler,
        [
            GeneratedSource(artifact, list(profile.per_file_flags)),
            SourceFile((root / profile.mainclient_src).resolve()),
        ],
        build_dir,
        include_dirs=include_dirs,
        defines=macros,
        flags=flags,
        link_libs=profile.link_libs,
        strip=strip,
    )
    amalgamation.depend_on(capture)
    graph.add(amalgamation)

    plan = BuildPlan(
        graph=graph,
        config=config,
        macros=macros,
        artifact=artifact,
        bootstrap=bootstrap,
        capture=capture,
        amalgamation=amalgamation,
    )

    graph.step("build", "Bootstrap a Janet interpreter and amalgamate").depend_on(amalgamation)

    # ── Run ──────────────────────────────────────────────────────────
    plan.run = RunNode(f"run {profile.final_name}", amalgamation, run_args)
    graph.depend(graph.step("run", "Build and run the Janet interpreter"), plan.run)

    # ── Test suite ───────────────────────────────────────────────────
    test_step = graph.step("test", "Build and execute the Janet test suite")
    test_step.depend_on(amalgamation)
    if with_tests:
        test_dir = (root / profile.test_subdir).resolve()
        for name in discover_fixtures(test_dir, profile.test_prefix, profile.test_suffix):
            run_tests = RunNode(
                f"test {name}",
                amalgamation,
                [name],
                cwd=test_dir,
                suppress_stderr=True,
            )
            label = fixture_label(name, profile.label_slice)
            success = LogNode(f"log {name}", f"Janet test suite {label} successful.")
            success.depend_on(run_tests)
            graph.depend(test_step, success)
            plan.tests.append(run_tests)

    logger.info(
        f"planned {len(graph.nodes)} nodes: {len(boot_sources)} bootstrap sources, "
        f"{len(plan.tests)} test fixtures, {len(macros)} macros"
    )
    return plan


def _failure_kind(error: Optional[BaseException]) -> Optional[str]:
    kind = getattr(error, "kind", None)
    return kind.value if kind is not None else None


def _node_records(nodes: Sequence[Any]) -> List[NodeRecord]:
    records: List[NodeRecord] = []
    for n in nodes:
        out = n.output_path
        records.append(NodeRecord(
            name=n.name,
            kind=n.kind,
            state=n.state.value,
            duration_ms=n.duration_ms,
            output_path=str(out) if out is not None else None,
            dependencies=[d.name for d in n.dependencies],
            failure_kind=_failure_kind(n.error),
            error=str(n.error) if n.error else None,
        ))
    return records


def run_build(
    config: JanetConfig,
    step: str = "build",
    compiler: Optional[Compiler] = None,
    build_dir: Path = Path("build"),
    profile: Optional[BuildProfile] = None,
    mode: ReleaseMode = ReleaseMode.DEBUG,
    strip: bool = False,
    run_args: Sequence[str] = (),
    jobs: int = 1,
    capture_limit: Optional[int] = None,
    output_dir: Optional[Path] = None,
    generator_factory: GeneratorFactory = ProcessGenerator,
) -> BuildReport:
    """
    Plan and execute *step* (``build``, ``run`` or ``test``).

    Parameters
    ----------
    config : JanetConfig
        The configuration record; its macros apply to every compile node.
    compiler : Compiler, optional
        Defaults to ``CCompiler("cc")``.
    output_dir : Path, optional
        Directory to write build_report.json.  If None, the report is
        only returned.

    Returns
    -------
    BuildReport — status FAILED names the failed node and the cause.
    """
    if step not in STEPS:
        raise ValueError(f"unknown step {step!r}, expected one of {STEPS}")
    if profile is None:
        profile = BuildProfile.v1()
    if compiler is None:
        compiler = CCompiler()

    report = BuildReport(
        profile_id=profile.profile_id,
        step=step,
        root_dir=config.root_dir,
        release_mode=mode.value,
        status="SUCCESS",
    )

    # ── Step 1: plan ─────────────────────────────────────────────────
    try:
        plan = plan_build(
            config,
            compiler,
            build_dir,
            profile=profile,
            mode=mode,
            strip=strip,
            run_args=run_args,
            with_tests=(step == "test"),
            capture_limit=capture_limit,
            generator_factory=generator_factory,
        )
    except BuildError as e:
        logger.error(f"planning failed: {e}")
        report.status = "FAILED"
        report.failed_node = "plan"
        report.failure_kind = e.kind.value
        report.error = str(e)
        if output_dir:
            write_report(report, output_dir)
        return report

    report.macros = plan.macros

    # ── Step 2: execute ──────────────────────────────────────────────
    try:
        plan.graph.execute([step], jobs=jobs)
    except BuildFailed as e:
        report.status = "FAILED"
        report.failed_node = e.node_name
        report.failure_kind = e.kind.value
        report.error = str(e.cause)

    # ── Step 3: report ───────────────────────────────────────────────
    report.nodes = _node_records(plan.graph.order([step]))
    report.tests_run = sum(1 for t in plan.tests if t.state == NodeState.SUCCESS)
    if output_dir:
        write_report(report, output_dir)
    return report


# ── CLI ──────────────────────────────────────────────────────────────────────

def build_parser(defaults: Any) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="janet_build — bootstrap a Janet interpreter and amalgamate",
    )
    parser.add_argument(
        "step",
        nargs="?",
        default="build",
        choices=STEPS,
        help="build (default), run, or test",
    )
    parser.add_argument("--root", type=Path, default=Path(defaults.ROOT_DIR),
                        help="Path of the Janet checkout")
    parser.add_argument("--build-dir", type=Path, default=Path(defaults.BUILD_DIR),
                        help="Directory for objects, binaries and the report")
    parser.add_argument("--cc", default=defaults.CC, help="C compiler driver")
    parser.add_argument("-j", "--jobs", type=int, default=defaults.JOBS,
                        help="Run independent nodes (test runs) concurrently")
    parser.add_argument("--release", default=ReleaseMode.DEBUG.value,
                        choices=[m.value for m in ReleaseMode],
                        help="Optimization mode (default: Debug)")
    parser.add_argument("--strip", action="store_true",
                        help="Strip debug symbols from executable")
    parser.add_argument("--capture-limit", type=int, default=defaults.CAPTURE_LIMIT,
                        help="Maximum bytes read from janet_boot")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")

    group = parser.add_argument_group("janet configuration")
    for f in CONFIG_FIELDS:
        if f.option is None:
            continue
        if f.kind == FieldKind.FLAG:
            group.add_argument(f"--{f.option}", dest=f.option, action="store_true",
                               default=None, help=f.help)
        elif f.kind == FieldKind.INTEGER:
            group.add_argument(f"--{f.option}", dest=f.option, type=int, help=f.help)
        else:
            group.add_argument(f"--{f.option}", dest=f.option, help=f.help)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for janet_build."""
    if argv is None:
        argv = sys.argv[1:]
    run_args: List[str] = []
    if "--" in argv:
        i = argv.index("--")
        argv, run_args = argv[:i], argv[i + 1:]

    try:
        defaults = BuildSettings()
    except ValidationError as e:
        print(f"error: invalid settings: {e}", file=sys.stderr)
        return 1
    args = build_parser(defaults).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    options: Dict[str, Any] = {
        f.option: vars(args).get(f.option) for f in CONFIG_FIELDS if f.option
    }
    mode = ReleaseMode(args.release)
    profile = replace(
        BuildProfile.v1(),
        test_prefix=defaults.TEST_PREFIX,
        test_suffix=defaults.TEST_SUFFIX,
    )
    try:
        config = JanetConfig.options(
            args.root,
            options,
            mode,
            include_subdir=profile.include_subdir,
            conf_subdir=profile.conf_subdir,
        )
    except ValidationError as e:
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 1

    report = run_build(
        config,
        step=args.step,
        compiler=CCompiler(args.cc),
        build_dir=args.build_dir,
        profile=profile,
        mode=mode,
        strip=args.strip,
        run_args=run_args,
        jobs=args.jobs,
        capture_limit=args.capture_limit,
        output_dir=args.build_dir,
    )

    if report.status != "SUCCESS":
        print(f"error: node '{report.failed_node}' failed: {report.error}", file=sys.stderr)
        return 1

    print(f"Step: {report.step} ({report.release_mode})")
    print(f"Nodes: {len(report.nodes)}  Macros: {len(report.macros)}")
    if report.step == "test":
        print(f"Test suites passed: {report.tests_run}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
