#!/usr/bin/env python
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from timecalc.logging_utils import setup_json_logging
from timecalc.schemas import CalculationSnapshotIn, summarize_batch
from timecalc.services.recalc import RecalculationBatch
from timecalc.settings import get_log_level


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recalculate daily values from a JSON snapshot.")
    parser.add_argument("snapshot", type=Path, help="Path to the calculation snapshot JSON file.")
    parser.add_argument("--max-workers", type=int, default=None, help="Concurrent employees (default from settings).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_json_logging(get_log_level())

    raw = json.loads(args.snapshot.read_text(encoding="utf-8"))
    snapshot = CalculationSnapshotIn.model_validate(raw)
    batch = RecalculationBatch(
        snapshot.to_jobs(),
        snapshot.to_plan_lookup(),
        max_workers=args.max_workers,
    )
    results = asyncio.run(batch.run())

    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        **summarize_batch(results),
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if summary["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
