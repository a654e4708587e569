#!/usr/bin/env python3
"""Validate local Intra Companion environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion.domain.models import SlotRecord, TimeInterval
from companion.repository.blob_store import FileBlobStore
from companion.services.interval_aggregator import aggregate
from companion.services.slot_merger import merge
from companion.services.ttl_cache import TTLCache
from companion.utils.clock import FixedClock

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="companion-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_names = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "requests",
        "pandas",
        "streamlit",
        "httpx",
        "pytest",
    ]
    import_errors: list[str] = []
    for module_name in package_names:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    start = datetime(2026, 3, 2, tzinfo=timezone.utc)
    try:
        # CHECK 3: Interval aggregation
        try:
            buckets = aggregate(
                [TimeInterval(start + timedelta(hours=22), start + timedelta(hours=26))],
                start,
                start + timedelta(days=2),
                timezone.utc,
            )
            hours = [bucket.hours for bucket in buckets]
            if hours != [2.0, 2.0]:
                raise RuntimeError(f"expected [2.0, 2.0], got {hours}")
            ok, line = _print_result("Interval aggregation", True)
        except Exception as exc:
            ok, line = _print_result("Interval aggregation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Slot merge
        try:
            records = [
                SlotRecord(index + 1, start + timedelta(minutes=15 * index), start + timedelta(minutes=15 * (index + 1)))
                for index in range(4)
            ]
            merged = merge(records)
            if len(merged) != 1 or merged[0].ids != (1, 2, 3, 4):
                raise RuntimeError(f"unexpected merge result {merged}")
            ok, line = _print_result("Slot merge", True)
        except Exception as exc:
            ok, line = _print_result("Slot merge", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Cache persistence across instances
        try:
            clock = FixedClock(start)
            store = FileBlobStore(Path(temp_dir) / "cache.json")
            TTLCache(store, clock).set("smoke", {"ok": True}, ttl=60)
            reopened = TTLCache(store, clock)
            reloaded = reopened.get("smoke")
            if reloaded != {"ok": True}:
                raise RuntimeError(f"expected persisted value, got {reloaded}")
            reopened.clear()
            if store.load() is not None:
                raise RuntimeError("cache document survived clear()")
            ok, line = _print_result("Cache persistence", True)
        except Exception as exc:
            ok, line = _print_result("Cache persistence", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Intra Companion Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
