# flightaudit/validate_rules.py
# Checks every threshold rules file before deploying it:
#   python -m flightaudit.validate_rules [rules_dir]
# JSON syntax errors are printed with line/col and surrounding context, then the
# folder is run through the real loader so schema and logic errors show up too.

import json
from pathlib import Path
import sys

from .load_rules import RULES_DIR, load_thresholds_from_folder


def print_context(txt: str, lineno: int, radius: int = 2):
    lines = txt.splitlines()
    ln = lineno - 1
    start = max(0, ln - radius)
    end = min(len(lines), ln + radius)
    print("---- context ----")
    for i in range(start, end):
        marker = ">>" if i == ln else "  "
        print(f"{marker} {i+1:4d}: {lines[i]}")
    print("-----------------")


def validate_json_file(p: Path) -> bool:
    try:
        txt = p.read_text(encoding="utf-8")
    except OSError as e:
        print(f"{p.name}: ERROR reading file: {e}")
        return False
    try:
        json.loads(txt)
    except json.JSONDecodeError as e:
        print(f"{p.name}: JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})")
        print_context(txt, e.lineno)
        return False
    print(f"{p.name}: OK")
    return True


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    rules_dir = Path(argv[0]) if argv else RULES_DIR

    if not rules_dir.exists():
        print("Rules folder not found:", rules_dir.resolve())
        return 1
    files = sorted(rules_dir.glob("*.json"))
    if not files:
        print("No .json files found in:", rules_dir.resolve())
        return 0

    syntax_bad = sum(0 if validate_json_file(f) else 1 for f in files)

    _, valid, invalid = load_thresholds_from_folder(rules_dir)
    for report in invalid:
        where = report.get("file", "?")
        if "index" in report:
            where = f"{where}[{report['index']}]"
        print(f"{where}: {report.get('error')}")

    print(
        f"\nSummary: {len(files) - syntax_bad} parsed, {syntax_bad} unparseable, "
        f"{len(valid)} rules valid, {len(invalid)} problems ({len(files)} files checked)"
    )
    return 2 if invalid else 0


if __name__ == "__main__":
    sys.exit(main())
