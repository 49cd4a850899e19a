"""Fetch and print a seller's balance JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for balance checks."""

    parser = argparse.ArgumentParser(description="Fetch a seller balance from the marketplace API.")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--user-id", required=True)
    args = parser.parse_args()

    resp = httpx.get(f"{args.api_url}/balance", headers={"x-user-id": args.user_id}, timeout=10.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
