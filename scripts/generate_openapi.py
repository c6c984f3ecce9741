#!/usr/bin/env python3
"""
Generate OpenAPI schema JSON for the render service and write it to docs/openapi.json.

Usage:
    python scripts/generate_openapi.py [--out <path>]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chrome_render.render_controller import app  # noqa: E402

DEFAULT_OUT = ROOT / "docs" / "openapi.json"


def write_schema(out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    # Stable output for diffs
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(app.openapi(), f, ensure_ascii=False, indent=2, sort_keys=True)
        f.write("\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate OpenAPI JSON from the render service app")
    parser.add_argument("--out", type=Path, default=DEFAULT_OUT, help="Output file path for openapi.json")
    args = parser.parse_args()
    write_schema(args.out)


if __name__ == "__main__":
    main()
