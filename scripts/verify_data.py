#!/usr/bin/env python3
from __future__ import annotations

import sqlite3
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from scripts.reset_demo import db_path, run_integrity_checks


def main() -> None:
    path = db_path()
    if not Path(path).exists():
        raise SystemExit(f"Database not found at {path}. Run reset_demo.py first.")

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        run_integrity_checks(conn)
        counts = {
            table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ("users", "customers", "inventory_items", "orders", "purchases", "contracts")
        }
    finally:
        conn.close()

    print("Integrity checks passed.")
    for table, count in counts.items():
        print(f"- {table}: {count}")


if __name__ == "__main__":
    main()
