"""Client-side proof-of-work utilities.

Solves challenges issued by `GET /api/captcha/challenge` and builds the
payload expected by `POST /api/captcha/verify-limit`. Mirrors what the web
widget does in the browser, so scripts and tests can lift a rate limit too.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from typing import Any

from libdesk.core.pow import challenge_for, is_supported


def find_solution(
    algorithm: str,
    challenge: str,
    salt: str,
    max_number: int,
    start: int = 0,
) -> int | None:
    """Find the secret number behind a challenge by brute force.

    Args:
        algorithm: Hash algorithm named by the challenge
        challenge: Published hex digest
        salt: Salt string, including its `?expires=` parameter
        max_number: Upper bound (inclusive) of the search
        start: First number to try

    Returns:
        The number, or None if no number in range produces the digest

    Raises:
        ValueError: If the algorithm is not supported
    """
    if not is_supported(algorithm):
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    for number in range(start, max_number + 1):
        if challenge_for(algorithm, salt, number) == challenge:
            return number
    return None


def build_solution(challenge: Mapping[str, Any], number: int) -> dict[str, Any]:
    """Return the solution document for a challenge and its number."""
    return {
        "algorithm": challenge["algorithm"],
        "challenge": challenge["challenge"],
        "number": number,
        "salt": challenge["salt"],
        "signature": challenge["signature"],
    }


def encode_payload(solution: Mapping[str, Any]) -> str:
    """Encode a solution document as the base64 JSON payload."""
    return base64.b64encode(json.dumps(dict(solution)).encode("utf-8")).decode("ascii")


def solve_challenge(challenge: Mapping[str, Any]) -> str | None:
    """Solve a challenge envelope and return the encoded payload.

    Returns None when the search range is exhausted without a match.
    """
    number = find_solution(
        challenge["algorithm"],
        challenge["challenge"],
        challenge["salt"],
        int(challenge["maxnumber"]),
    )
    if number is None:
        return None
    return encode_payload(build_solution(challenge, number))
