#!/usr/bin/env python3
"""Evaluate a metrics event log against SLO thresholds; exit non-zero on violation."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from apps.api.services import metrics

SLO_THRESHOLDS = {
    "DatasetUploaded": {"p95": 30_000, "fallback_rate": 0.5},
    "ChartOptionGenerated": {"p95": 200},
}

OUTPUT_ENV = "CHARTSTUDIO_SLO_OUTPUT"


def load_events(path: Path) -> list[dict]:
    if not path.exists():
        return []
    return list(metrics.load_event_log(path))


def write_output(payload: dict, destination: str | None) -> None:
    if not destination:
        return
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    target = Path(argv[0]) if argv else metrics.get_event_log_path()
    metrics.bootstrap_from_events(load_events(target))
    violations = metrics.detect_violations(SLO_THRESHOLDS)

    output = {
        "slo_thresholds": SLO_THRESHOLDS,
        "snapshot": metrics.slo_snapshot(),
        "violations": violations,
        "event_log": str(target),
    }
    print(json.dumps(output, ensure_ascii=False, indent=2))
    write_output(output, os.getenv(OUTPUT_ENV))

    has_violation = any(any(result.values()) for result in violations.values())
    return 1 if has_violation else 0


if __name__ == "__main__":
    sys.exit(main())
