# MIT License © 2025 Motohiro Suzuki
"""
tools/run_cases.py

Runs every case of a handshake case table (default: cases/handshake_cases.yml)
and compares the outcome with the case's `expect` mapping.

Any mismatch, unknown outcome field or configuration error fails the
process, so the table can gate CI.

    python tools/run_cases.py [path/to/cases.yml]
"""

import sys
from pathlib import Path

from protocol.config import load_cases
from protocol.errors import HarnessError
from protocol.handshake import do_handshake
from protocol.outcome import mismatches

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CASE_TABLE = PROJECT_ROOT / "cases" / "handshake_cases.yml"


def fail(msg: str):
    print(f"[FAIL] {msg}")
    sys.exit(1)


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    table = Path(args[0]) if args else CASE_TABLE
    if not table.exists():
        fail(f"case table not found: {table}")

    try:
        cases = load_cases(table)
    except HarnessError as e:
        fail(f"{table}: {e}")
    if not cases:
        fail(f"no cases defined in {table}")

    failed = []

    for case in cases:
        try:
            outcome = do_handshake(case.config)
        except HarnessError as e:
            failed.append(f"{case.name}: {type(e).__name__}: {e}")
            continue

        diffs = mismatches(outcome, case.expect)
        if diffs:
            failed.append(f"{case.name}: " + "; ".join(diffs))
        else:
            print(f"[OK] {case.name}")

    if failed:
        print("[FAIL] handshake cases:")
        for m in failed:
            print(f"  - {m}")
        sys.exit(1)

    print(f"[OK] all handshake cases passed ({len(cases)} cases)")


if __name__ == "__main__":
    main()
