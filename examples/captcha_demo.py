#!/usr/bin/env python3
"""Walk through the rate-limit recovery flow against a running server.

This script:
1. Calls a protected route until the server answers 429
2. Fetches a proof-of-work challenge
3. Solves it and submits the payload to lift the limit
4. Encrypts a sample credential with the advertised public key

Usage:
    python examples/captcha_demo.py --base-url http://localhost:8000
"""
from __future__ import annotations

import argparse
import sys

import httpx

from libdesk.utils.pow_client import solve_challenge
from libdesk.utils.rsa_client import encrypt_json


def exhaust_quota(client: httpx.Client, max_requests: int) -> bool:
    """Hit /api/status until throttled; returns True once a 429 is seen."""
    for attempt in range(1, max_requests + 1):
        r = client.get("/api/status")
        if r.status_code == 429:
            print(f"Throttled after {attempt} requests: {r.json()['message']}")
            return True
    print(f"Not throttled after {max_requests} requests")
    return False


def lift_limit(client: httpx.Client) -> bool:
    challenge = client.get("/api/captcha/challenge").json()
    print(f"Challenge: {challenge['algorithm']} up to {challenge['maxnumber']}")
    payload = solve_challenge(challenge)
    if payload is None:
        print("No solution found within the search range")
        return False
    r = client.post("/api/captcha/verify-limit", json={"payload": payload})
    print(f"verify-limit -> {r.status_code} {r.json()}")
    return r.status_code == 200


def main() -> int:
    parser = argparse.ArgumentParser(description="Rate-limit recovery demo")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--max-requests", type=int, default=150)
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url, timeout=10.0) as client:
        exhaust_quota(client, args.max_requests)
        if not lift_limit(client):
            return 1
        status = client.get("/api/status")
        print(f"After verification: {status.status_code}, "
              f"{status.headers.get('RateLimit-Remaining')} requests left")
        ciphertext = encrypt_json(status.json()["publicKey"], {"password": "demo-password"})
        print(f"Encrypted credential: {ciphertext[:48]}...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
