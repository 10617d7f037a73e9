"""Entry point: python -m krecord [normalize|diaries|sheets|relations]

- "normalize": Migrate legacy layouts and re-run the placement sweep
- "diaries":   Print every diary entry as JSON, newest first
- "sheets":    Print every sheet with its rows as JSON
- "relations": Print the row <-> diary index
"""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

from krecord.config import load_config

if TYPE_CHECKING:
    from krecord.core import Krecord


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_json(data: object) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _build() -> Krecord:
    config = load_config()
    _setup_logging(config.log_level)

    from krecord.core import Krecord

    return Krecord(config)


def _run_normalize() -> int:
    report = _build().normalize()
    _print_json(report.to_dict())
    return 1 if report.failures else 0


def _run_diaries() -> int:
    _print_json([entry.to_dict() for entry in _build().diaries.list_all()])
    return 0


def _run_sheets() -> int:
    _print_json([sheet.to_dict() for sheet in _build().sheets.read_sheets()])
    return 0


def _run_relations() -> int:
    _print_json(_build().relations.read().to_dict())
    return 0


COMMANDS = {
    "normalize": _run_normalize,
    "diaries": _run_diaries,
    "sheets": _run_sheets,
    "relations": _run_relations,
}


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""

    runner = COMMANDS.get(cmd)
    if runner is None:
        print("Usage: python -m krecord [normalize|diaries|sheets|relations]")
        print("  normalize  Migrate legacy layouts and fix misplaced entries")
        print("  diaries    List diary entries as JSON")
        print("  sheets     List sheets and their rows as JSON")
        print("  relations  Print the row <-> diary index")
        sys.exit(1)
    sys.exit(runner())


if __name__ == "__main__":
    main()
