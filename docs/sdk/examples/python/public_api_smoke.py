import os
import sys

import requests

base_url = os.getenv("BACKOFFICE_BASE_URL", "http://localhost:8000").rstrip("/")
token = os.getenv("BACKOFFICE_TOKEN")

if not token:
    raise RuntimeError("BACKOFFICE_TOKEN is required")

headers = {"Authorization": f"Bearer {token}"}


def main() -> int:
    ready_response = requests.get(f"{base_url}/ready", timeout=15)
    ready_response.raise_for_status()

    orders_response = requests.get(
        f"{base_url}/orders",
        headers=headers,
        params={"needs_reconciliation": "true", "limit": 5, "offset": 0},
        timeout=15,
    )
    orders_response.raise_for_status()

    summary_response = requests.get(f"{base_url}/finance/summary", headers=headers, timeout=15)
    summary_response.raise_for_status()

    orders = orders_response.json()
    summary = summary_response.json()
    print(f"Store ready: {ready_response.json()['ok']}")
    print(f"Orders pending reconciliation: {orders['pagination']['total']}")
    print(f"Overall balance: {summary['overall']['balance']}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except requests.RequestException as exc:
        print(f"Backoffice API smoke check failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
