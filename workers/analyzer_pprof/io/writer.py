"""
Writer — serialize analyzer reports to JSON files.

Filesystem layout per run:
    <output_dir>/<report_name>.json

Output is ``indent=2, sort_keys=True`` with a trailing newline, so two
runs over the same profile produce byte-identical files.
"""
import json
from pathlib import Path

from pydantic import BaseModel


def render_report(report: BaseModel) -> str:
    return (
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )


def write_report(report: BaseModel, output_dir: Path, report_name: str) -> Path:
    """
    Write *report* to ``<output_dir>/<report_name>.json``.

    Creates *output_dir* if it does not exist.
    Returns the written file path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    report_path = output_dir / f"{report_name}.json"
    report_path.write_text(render_report(report))

    return report_path
