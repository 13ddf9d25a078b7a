"""
Writer — serialize the build report to JSON.

Filesystem layout:
    <build_dir>/build_report.json
"""
import json
from pathlib import Path

from janet_build.io.schema import BuildReport


def write_report(report: BuildReport, output_dir: Path) -> Path:
    """
    Write build_report.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the report path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    report_path = output_dir / "build_report.json"
    report_path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return report_path
