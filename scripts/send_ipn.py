"""Sign and post a NOWPayments IPN to the webhook receiver.

Useful for manual duplicate-delivery testing: `--repeat 3` sends the same
callback three times and the order should settle exactly once.
"""

import argparse
import json
from pathlib import Path

import httpx

from vaultmarket.services.payments.signatures import nowpayments_signature


def main() -> None:
    """Parse CLI args, sign the IPN body and post it."""

    parser = argparse.ArgumentParser(description="Post a signed NOWPayments IPN callback.")
    parser.add_argument("--webhook-url", default="http://localhost:8001/webhooks/nowpayments")
    parser.add_argument("--secret", required=True, help="NOWPayments IPN secret")
    parser.add_argument("--order-id", default=None)
    parser.add_argument("--status", default="finished")
    parser.add_argument("--payment-id", default="5077125051")
    parser.add_argument("--payin-hash", default=None)
    parser.add_argument("--file", dest="json_file", default=None, help="Path to a full IPN JSON body")
    parser.add_argument("--repeat", type=int, default=1)
    args = parser.parse_args()

    if args.json_file:
        body = json.loads(Path(args.json_file).read_text())
    elif args.order_id:
        body = {
            "order_id": args.order_id,
            "payment_id": args.payment_id,
            "payment_status": args.status,
            "payin_hash": args.payin_hash,
        }
    else:
        raise SystemExit("Provide --order-id or --file")

    headers = {"x-nowpayments-sig": nowpayments_signature(body, args.secret)}
    with httpx.Client(timeout=10.0) as client:
        for attempt in range(1, args.repeat + 1):
            resp = client.post(args.webhook_url, json=body, headers=headers)
            print(f"attempt={attempt} status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
