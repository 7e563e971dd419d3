from __future__ import annotations

import asyncio
import random
from typing import Any, Dict

import aiohttp

from .config import HTTP_BACKOFF_BASE, HTTP_MAX_ATTEMPTS, HTTP_TIMEOUT_SECS, WAHA_API_KEY, logger


class TransportError(Exception):
    """A platform call that failed for good.

    Raised for non-retryable statuses, connection failures, and when the
    retry budget for 429/5xx responses is used up (``exhausted=True``).
    """

    def __init__(self, message: str, *, status: int | None = None, url: str = "",
                 attempts: int = 1, exhausted: bool = False):
        super().__init__(message)
        self.status = status
        self.url = url
        self.attempts = attempts
        self.exhausted = exhausted


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def backoff_delay(attempt: int, base_delay: float, jitter: bool = True) -> float:
    """Delay before retrying after the given 0-based attempt."""
    delay = base_delay * (2 ** attempt)
    if jitter:
        # Never exceeds the un-jittered delay, so the total stays bounded
        delay *= 0.5 + random.random() / 2
    return delay


def build_headers(api_key: str | None = None) -> Dict[str, str]:
    key = WAHA_API_KEY if api_key is None else api_key
    h = {
        "accept": "application/json",
        "content-type": "application/json",
    }
    if key:
        h["X-Api-Key"] = key
    return h


def make_session(api_key: str | None = None) -> aiohttp.ClientSession:
    timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECS)
    return aiohttp.ClientSession(
        timeout=timeout,
        headers=build_headers(api_key),
        trust_env=True,
    )


async def _read_body(r: aiohttp.ClientResponse) -> Any:
    txt = await r.text()
    if not txt.strip():
        return None
    try:
        return await r.json(content_type=None)
    except ValueError:
        return txt


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    params: Dict[str, str] | None = None,
    json: Any = None,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    jitter: bool = True,
) -> Any:
    """Perform a request, retrying only on 429 and 5xx with exponential backoff.

    Returns the decoded body (``None`` for an empty 2xx body).
    """
    attempts = HTTP_MAX_ATTEMPTS if max_attempts is None else max_attempts
    base = HTTP_BACKOFF_BASE if base_delay is None else base_delay
    last_status: int | None = None

    for attempt in range(attempts):
        logger.debug(f"API request: {method} {url} (attempt {attempt + 1}/{attempts})")
        try:
            async with session.request(method, url, params=params, json=json) as r:
                if 200 <= r.status < 300:
                    logger.debug(f"API success: {method} {url}")
                    return await _read_body(r)

                txt = await r.text()
                last_status = r.status
                if not is_retryable_status(r.status):
                    logger.warning(f"API error for {url}: {r.status}")
                    raise TransportError(
                        f"HTTP {r.status} for {url} :: {txt[:300]}",
                        status=r.status,
                        url=url,
                        attempts=attempt + 1,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"API connection failure for {url}: {e}")
            raise TransportError(f"Connection failed for {url}: {e}", url=url, attempts=attempt + 1) from e

        if attempt < attempts - 1:
            delay = backoff_delay(attempt, base, jitter)
            logger.warning(
                f"API call failed (attempt {attempt + 1}/{attempts}, status {last_status}). "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    logger.error(f"API call to {url} failed after {attempts} attempts (last status {last_status})")
    raise TransportError(
        f"Failed after {attempts} attempts (last status {last_status}) for {url}",
        status=last_status,
        url=url,
        attempts=attempts,
        exhausted=True,
    )


async def fetch_json(session: aiohttp.ClientSession, url: str, params: Dict[str, str] | None = None) -> Any:
    return await request_json(session, "GET", url, params=params)
