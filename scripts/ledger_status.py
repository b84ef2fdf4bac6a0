#!/usr/bin/env python3
"""
Show (and optionally change) the ledger mode of a running service.

The admin session is passed as the user_session cookie the service expects.

Usage:
    python scripts/ledger_status.py --admin-id u-admin
    python scripts/ledger_status.py --admin-id u-admin --force-mock on
    python scripts/ledger_status.py --admin-id u-admin --logs 24
"""
import argparse
import json
import sys

import requests


def _cookies(admin_id: str, email: str) -> dict:
    return {"user_session": json.dumps({"id": admin_id, "role": "ADMIN", "email": email})}


def get_status(base_url: str, cookies: dict) -> dict:
    response = requests.get(f"{base_url}/blockchain/status", cookies=cookies, timeout=30)
    response.raise_for_status()
    return response.json()


def reload_config(base_url: str, cookies: dict, force_mock: str) -> dict:
    body = {} if force_mock == "keep" else {"forceMockMode": force_mock == "on"}
    response = requests.post(f"{base_url}/config/reload", json=body, cookies=cookies, timeout=30)
    response.raise_for_status()
    return response.json()


def get_logs(base_url: str, cookies: dict, hours: int) -> list:
    response = requests.get(f"{base_url}/blockchain/logs", params={"hours": hours},
                            cookies=cookies, timeout=30)
    response.raise_for_status()
    return response.json()


def main():
    parser = argparse.ArgumentParser(description="Grade attestation ledger status")
    parser.add_argument("--service", default="http://localhost:8080")
    parser.add_argument("--admin-id", required=True)
    parser.add_argument("--admin-email", default="")
    parser.add_argument("--force-mock", choices=["on", "off", "keep"],
                        help="reload configuration; keep leaves FORCE_MOCK_MODE as configured")
    parser.add_argument("--logs", type=int, metavar="HOURS",
                        help="also list ledger audit entries of the last HOURS")
    args = parser.parse_args()

    cookies = _cookies(args.admin_id, args.admin_email)
    try:
        if args.force_mock:
            status = reload_config(args.service, cookies, args.force_mock)
            print("Configuration reloaded")
        else:
            status = get_status(args.service, cookies)
    except requests.RequestException as exc:
        print(f"Service error: {exc}")
        sys.exit(2)

    print(f"Connected     : {status['connected']}")
    print(f"Mock mode     : {status['mockMode']}")
    print(f"Compat error  : {status.get('compatibilityError') or '-'}")

    if args.logs:
        entries = get_logs(args.service, cookies, args.logs)
        print(f"\nLedger log, last {args.logs}h ({len(entries)} entries)")
        for e in entries:
            print(f"  {e['createdAt'][:19]}  {e['action']:36s}  {e['details'][:80]}")

    sys.exit(0 if status["connected"] and not status["mockMode"] else 1)


if __name__ == "__main__":
    main()
