#!/usr/bin/env python3
"""Dispatch invariant checks against the policy config and stored state."""

import sys
from pathlib import Path

from dispatch.invariants import run_checks


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
DATA_DIR = ROOT / "data"


def check(config_dir: Path = CONFIG_DIR, data_dir: Path = DATA_DIR) -> int:
    errors = run_checks(config_dir, data_dir)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    config = Path(sys.argv[1]) if len(sys.argv) > 1 else CONFIG_DIR
    data = Path(sys.argv[2]) if len(sys.argv) > 2 else DATA_DIR
    raise SystemExit(check(config, data))
