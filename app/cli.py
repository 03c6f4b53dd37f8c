import argparse
import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from intake.config import get_settings
from intake.consensus.audit import JsonlAuditSink
from intake.consensus.committee import Committee
from intake.errors import ConfigError
from intake.extraction.extractor import OrderExtractor
from intake.ir import CaseMetadata
from intake.logger import set_level
from intake.pipeline import CaseOutcome, build_committee, process_case

WORKBOOK_SUFFIXES = (".xlsx", ".xlsm")


def collect_source_paths(inputs: List[str]) -> List[Path]:
    collected: List[Path] = []
    for raw in inputs:
        path = Path(raw).expanduser()
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and child.suffix.lower() in WORKBOOK_SUFFIXES:
                    collected.append(child)
        elif path.is_file():
            collected.append(path)
        else:
            print(f"[warn] input not found: {raw}")
    return collected


def parse_resolutions(items: Optional[List[str]]) -> Dict[str, str]:
    resolutions: Dict[str, str] = {}
    for item in items or []:
        entity, sep, status = item.partition("=")
        if not sep or not entity.strip() or not status.strip():
            raise argparse.ArgumentTypeError(f"--resolution expects field=status, got {item!r}")
        resolutions[entity.strip()] = status.strip()
    return resolutions


def write_json_output(outcome: CaseOutcome, output_dir: str, case_id: str) -> str:
    output_path = Path(output_dir).resolve()
    output_path.mkdir(parents=True, exist_ok=True)
    json_path = output_path / f"{case_id}.json"
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(outcome.to_dict(), f, ensure_ascii=False, indent=2, default=str)
    return str(json_path)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract purchase orders from spreadsheets and route them."
    )
    parser.add_argument(
        "--inputs",
        nargs="+",
        required=True,
        help="Workbook paths or directories.",
    )
    parser.add_argument(
        "--output-dir",
        default="output",
        help="Directory to write one JSON result per case.",
    )
    parser.add_argument(
        "--case-id",
        default=None,
        help="Case id (single input only; default: the file name without suffix).",
    )
    parser.add_argument(
        "--language-hint",
        default=None,
        help="Language hint for the order, e.g. en or fa.",
    )
    parser.add_argument(
        "--no-review",
        action="store_true",
        help="Skip the reviewer committee even when columns are ambiguous.",
    )
    parser.add_argument(
        "--resolution",
        action="append",
        default=None,
        help="Entity resolution outcome as field=status (repeatable).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    file_paths = collect_source_paths(args.inputs)
    if not file_paths:
        print("[error] no valid input files found.")
        return 1
    if args.case_id and len(file_paths) > 1:
        print("[error] --case-id can only be used with a single input file.")
        return 1
    try:
        resolutions = parse_resolutions(args.resolution)
    except argparse.ArgumentTypeError as e:
        print(f"[error] {e}")
        return 1

    settings = get_settings()
    set_level(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    committee: Optional[Committee] = None
    if not args.no_review:
        try:
            committee = build_committee(settings)
        except ConfigError as e:
            print(f"[warn] reviewer committee unavailable, continuing without review: {e}")

    extractor = OrderExtractor(max_upload_bytes=settings.MAX_UPLOAD_BYTES)
    audit_sink = JsonlAuditSink(settings.AUDIT_DIR)
    exit_code = 0
    try:
        for path in file_paths:
            data = path.read_bytes()
            case_id = args.case_id or path.stem
            meta = CaseMetadata(
                case_id=case_id,
                filename=path.name,
                file_sha256=hashlib.sha256(data).hexdigest(),
                language_hint=args.language_hint,
            )
            outcome = process_case(
                data,
                meta,
                committee=committee,
                resolutions=resolutions,
                audit_sink=audit_sink,
                extractor=extractor,
            )
            json_path = write_json_output(outcome, args.output_dir, case_id)
            print(f"{case_id}: {outcome.routing.action} -> {json_path}")
            for reason in outcome.routing.reasons:
                print(f"  - {reason}")
            if outcome.routing.action != "auto_proceed":
                exit_code = 2
    finally:
        if committee is not None:
            committee.close()
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
