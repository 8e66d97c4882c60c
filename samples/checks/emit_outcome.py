"""Print a unit outcome as the last stdout line.

Usage: emit_outcome.py SCORE [SEVERITY[+fix]:MESSAGE ...]
"""

from __future__ import annotations

import json
import os
import sys


def main(argv: list[str]) -> int:
    if not argv:
        print("usage: emit_outcome.py SCORE [SEVERITY[+fix]:MESSAGE ...]", file=sys.stderr)
        return 2

    issues = []
    for raw in argv[1:]:
        severity, _, message = raw.partition(":")
        severity, _, flag = severity.partition("+")
        issues.append(
            {
                "severity": severity,
                "message": message or "unspecified finding",
                "auto_fixable": flag == "fix",
            }
        )

    options = json.loads(os.environ.get("NEXUS_VERIFY_OPTIONS", "{}"))
    print(f"unit={os.environ.get('NEXUS_VERIFY_UNIT_ID', '?')} options={sorted(options)}")
    print(json.dumps({"score": float(argv[0]), "issues": issues}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
