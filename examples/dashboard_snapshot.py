#!/usr/bin/env python
"""Example: Fetching the dashboard via the API.

Computes the dashboard for a date range, prints the headline cards, then
submits the same range as a background run and polls until it settles.

Prerequisites:
    - API server running: uv run uvicorn app.main:app --reload --port 8123
    - DATABASE_URL pointing at the product database

Usage:
    uv run python examples/dashboard_snapshot.py
    uv run python examples/dashboard_snapshot.py --start 2024-01-01 --end 2024-01-31
"""

import argparse
import json
import sys
import time

import httpx

API_BASE = "http://localhost:8123"


def print_section(title: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}\n")


def format_ranking(items: list[dict]) -> str:
    """Render ranked items as "key (count), ..."."""
    return ", ".join(f"{i['key']} ({i['count']})" for i in items) or "-"


def print_summary(snapshot: dict) -> None:
    """Print the summary cards with their deltas."""
    current = snapshot["summary"]["current"]
    deltas = snapshot["summary"]["deltas"]
    period = snapshot["period"]
    print(f"Period: {period['start_date']} to {period['end_date']} ({period['days']} days)")
    print()
    for key in ("signups", "transformations", "reprocessing_rate", "plans_contracted", "revenue"):
        delta = deltas.get(key)
        delta_text = "n/a" if delta is None else f"{delta:+.2f}%"
        print(f"  {key:<20} {current[key]!s:>12}   ({delta_text})")

    print()
    print("Funnel:")
    for stage, rate in snapshot["funnel"]["conversion_rates"].items():
        print(f"  {stage:<20} {snapshot['funnel'][stage]:>6}   {rate:6.2f}%")

    print()
    print("Popular styles:", format_ranking(snapshot["popular_styles"]))
    print("Popular plans: ", format_ranking(snapshot["popular_plans"]))


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch the admin dashboard")
    parser.add_argument("--start", help="First day (YYYY-MM-DD)")
    parser.add_argument("--end", help="Last day (YYYY-MM-DD)")
    parser.add_argument("--json", action="store_true", help="Dump the raw snapshot")
    args = parser.parse_args()

    params = {k: v for k, v in {"start_date": args.start, "end_date": args.end}.items() if v}

    with httpx.Client(base_url=API_BASE, timeout=60.0) as client:
        try:
            response = client.get("/analytics/dashboard", params=params)
        except httpx.ConnectError:
            print(f"Cannot connect to API at {API_BASE}")
            print("Start the API with: uv run uvicorn app.main:app --reload --port 8123")
            return 1

        if response.status_code != 200:
            problem = response.json()
            print(f"[{response.status_code}] {problem.get('code')}: {problem.get('detail')}")
            if problem.get("dataset"):
                print(f"Failed dataset: {problem['dataset']}")
            return 1

        snapshot = response.json()
        print_section("Dashboard")
        if args.json:
            print(json.dumps(snapshot, indent=2))
        else:
            print_summary(snapshot)

        print_section("Background run")
        submitted = client.post("/analytics/dashboard/runs", json=params).json()
        print(f"Submitted run {submitted['run_id']}")

        while True:
            latest = client.get("/analytics/dashboard/runs/latest").json()
            if latest["status"] != "pending":
                break
            time.sleep(0.5)

        print(f"Run {latest['run_id']} finished with status '{latest['status']}'")
        if latest["status"] == "error":
            print(f"  {latest['error_code']}: {latest['error_message']}")
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
