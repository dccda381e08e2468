"""
Password breach check against the Have I Been Pwned range API.

Only the first five hex characters of the password's SHA-1 leave the
process (k-anonymity); the remaining suffix is matched locally against the
returned ``SUFFIX:COUNT`` lines. Network failures fail open.
"""

import hashlib
import logging
from dataclasses import dataclass

import httpx

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.breach_check")


@dataclass(frozen=True)
class BreachResult:
    breached: bool
    count: int = 0
    checked: bool = True


def sha1_prefix_suffix(password: str) -> tuple[str, str]:
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
    return digest[:5], digest[5:]


def find_suffix_count(body: str, suffix: str) -> int:
    """Count for ``suffix`` in a range response body; 0 when absent or padding."""
    for line in body.splitlines():
        candidate, _, count = line.strip().partition(":")
        if candidate.upper() == suffix:
            try:
                return int(count)
            except ValueError:
                return 0
    return 0


class PasswordBreachChecker:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def check(self, password: str) -> BreachResult:
        prefix, suffix = sha1_prefix_suffix(password)
        try:
            async with httpx.AsyncClient(
                base_url=settings.HIBP_API_URL,
                timeout=settings.HIBP_TIMEOUT_SECONDS,
                transport=self.transport,
            ) as client:
                response = await client.get(
                    f"/range/{prefix}",
                    headers={"Add-Padding": "true", "User-Agent": settings.PROJECT_NAME},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Breach check unavailable, allowing password: %s", e)
            return BreachResult(breached=False, checked=False)

        count = find_suffix_count(response.text, suffix)
        return BreachResult(breached=count > 0, count=count)


# Global instance
breach_checker = PasswordBreachChecker()
