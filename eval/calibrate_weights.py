"""
Reviewer calibration tool.

    python eval/calibrate_weights.py run --corpus eval/corpus --version 2026-10 \
        --output output/weights-2026-10.pending.yaml
    python eval/calibrate_weights.py approve --candidate output/weights-2026-10.pending.yaml \
        --approver "j.doe"

``run`` never touches the active table; ``approve`` is the only way a
candidate becomes active and it asks for confirmation unless ``--yes``.
"""

import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from intake.config import get_settings
from intake.consensus.calibration import (
    approve_weight_table,
    build_weight_table,
    compute_accuracy,
    load_corpus,
    run_calibration,
)
from intake.consensus.reviewers.registry import build_reviewer_pool
from intake.consensus.weights import dump_weight_table, load_weight_table
from intake.errors import IntakeError


def cmd_run(args: argparse.Namespace) -> int:
    corpus = load_corpus(args.corpus)
    reviewers = build_reviewer_pool(settings=get_settings())
    if not reviewers:
        print("[error] reviewer pool has no enabled reviewers.")
        return 1

    outcomes = run_calibration(reviewers, corpus)
    accuracy = compute_accuracy(outcomes, corpus)
    table = build_weight_table(accuracy, args.version, corpus.version, min_cases=args.min_cases)
    path = dump_weight_table(table, args.output)

    print(json.dumps(accuracy, ensure_ascii=False, indent=2))
    print(f"Pending weight table written: {path}")
    print("Review it, then activate with: calibrate_weights.py approve --candidate", path, "--approver NAME")
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    candidate = load_weight_table(args.candidate, require_approved=False)
    active_path = args.active or get_settings().WEIGHT_TABLE_PATH
    print(f"Candidate version: {candidate.version} (corpus {candidate.corpus_version})")
    for field_name, row in sorted(candidate.weights.items()):
        print(f"  {field_name}: " + ", ".join(f"{rid}={w:g}" for rid, w in sorted(row.items())))
    if not args.yes:
        answer = input(f"Activate this table at {active_path}? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Aborted.")
            return 1
    approved = approve_weight_table(candidate, args.approver, active_path)
    print(f"Active weight table is now {approved.version}, approved by {approved.approved_by}")
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Calibrate reviewer weights offline.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Score the reviewer pool on a corpus and write a pending table.")
    run.add_argument("--corpus", required=True, help="Corpus directory (corpus.yaml + cases/).")
    run.add_argument("--version", required=True, help="Version label for the new table.")
    run.add_argument("--output", required=True, help="Where to write the pending table.")
    run.add_argument("--min-cases", type=int, default=5, help="Attempts needed before a weight departs from 1.0.")
    run.set_defaults(func=cmd_run)

    approve = sub.add_parser("approve", help="Approve a pending table and make it active.")
    approve.add_argument("--candidate", required=True, help="Pending weight table YAML.")
    approve.add_argument("--approver", required=True, help="Name of the approving person.")
    approve.add_argument("--active", default=None, help="Active table path (default: WEIGHT_TABLE_PATH).")
    approve.add_argument("--yes", action="store_true", help="Do not ask for confirmation.")
    approve.set_defaults(func=cmd_approve)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        return args.func(args)
    except IntakeError as e:
        print(f"[error] {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
