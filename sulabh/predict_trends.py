#!/usr/bin/env python3
from __future__ import annotations

import json
import sys
from pathlib import Path


def main() -> int:
    if len(sys.argv) < 2:
        print("Usage: python sulabh/predict_trends.py <week|month|quarter|year> [months] [category] [department]")
        return 2

    period = sys.argv[1]
    try:
        months = int(sys.argv[2]) if len(sys.argv) >= 3 else 3
    except ValueError:
        print("months must be an integer")
        return 2
    category = sys.argv[3] if len(sys.argv) >= 4 else None
    department = sys.argv[4] if len(sys.argv) >= 5 else None

    # Import from backend package (works regardless of current working directory)
    repo_root = Path(__file__).resolve().parent
    sys.path.insert(0, str((repo_root / "backend").resolve()))
    from database import init_db, session_scope  # type: ignore
    from services.complaint_store import SqlComplaintStore, StoreError  # type: ignore
    from services.prediction_service import predict_trends  # type: ignore

    init_db()
    try:
        with session_scope() as db:
            res = predict_trends(
                SqlComplaintStore(db),
                period=period,
                category=category,
                department=department,
                months=months,
            )
    except (ValueError, StoreError) as e:
        print(json.dumps({"error": str(e)}))
        return 1
    print(json.dumps(res, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
