"""Score the share of expected files that exist; one medium issue per missing file."""

from __future__ import annotations

import json
import sys
from pathlib import Path


def main(paths: list[str]) -> int:
    missing = [path for path in paths if not Path(path).exists()]
    score = 100 if not paths else round(100 * (len(paths) - len(missing)) / len(paths))
    issues = [
        {
            "severity": "medium",
            "category": "schema",
            "message": f"expected file is missing: {path}",
            "locator": {"resource": path},
        }
        for path in missing
    ]
    print(json.dumps({"score": score, "issues": issues}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
