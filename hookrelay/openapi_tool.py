"""Write or check a deterministic OpenAPI document for the relay API."""

from __future__ import annotations

import argparse
import json
from pathlib import Path


def spec_text() -> str:
    from hookrelay.main import app

    return json.dumps(app.openapi(), indent=2, sort_keys=True) + "\n"


def write(path: str) -> str:
    text = spec_text()
    Path(path).write_text(text, encoding="utf-8")
    return text


def check(path: str) -> bool:
    try:
        have = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return False
    return have == spec_text()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="hookrelay-openapi")
    ap.add_argument("--out", default="openapi.json")
    ap.add_argument("--check", action="store_true")
    args = ap.parse_args(argv)
    if args.check:
        if not check(args.out):
            print(
                f"{args.out} out of date. Regenerate with:\n"
                f"  python -m hookrelay.openapi_tool --out {args.out}"
            )
            return 1
        print(f"{args.out} up-to-date")
        return 0
    text = write(args.out)
    print(f"Wrote {args.out} ({len(text)} bytes)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
