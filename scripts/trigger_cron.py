#!/usr/bin/env python3
"""
Fire one scheduled workflow on the backend, the way an external cron would.

Usage:
    CRON_SECRET=xxx python scripts/trigger_cron.py [--workflow agent.cycle] [--backend-url http://localhost:8000]
"""

import argparse
import json
import os
import sys

import requests


def trigger(backend_url: str, workflow: str, secret: str, timeout: float = 120.0) -> dict:
    headers = {"Content-Type": "application/json"}
    if secret:
        headers["Authorization"] = f"Bearer {secret}"
    r = requests.post(
        f"{backend_url.rstrip('/')}/triggers/cron",
        json={"workflow": workflow, "requested_by": "trigger_cron"},
        headers=headers,
        timeout=timeout,
    )
    if r.status_code == 401:
        raise SystemExit("cron trigger rejected: check CRON_SECRET")
    r.raise_for_status()
    return r.json()


def main():
    parser = argparse.ArgumentParser(description="Trigger a scheduled workflow via POST /triggers/cron")
    parser.add_argument(
        "--backend-url",
        default=os.getenv("BACKEND_URL", "http://localhost:8000"),
        help="Backend URL (default: $BACKEND_URL or http://localhost:8000)",
    )
    parser.add_argument(
        "--workflow",
        default="agent.cycle",
        help="Workflow key: agent.cycle, relationship.sync, memory.cleanup, token.reset",
    )
    parser.add_argument("--timeout", type=float, default=120.0)
    args = parser.parse_args()

    out = trigger(args.backend_url, args.workflow, os.getenv("CRON_SECRET", "").strip(), timeout=args.timeout)
    print(json.dumps(out, indent=2))
    sys.exit(0 if out.get("success") else 1)


if __name__ == "__main__":
    main()
