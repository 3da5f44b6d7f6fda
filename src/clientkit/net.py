# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""HTTP plumbing for the GitHub REST backend.

Every forge call opens a short-lived :class:`httpx.AsyncClient` with
GitHub's headers and goes through :func:`request_with_retry`. GitHub
signals throttling three ways, and each gets its own wait::

    429 / 403 + Retry-After            wait Retry-After seconds
    403 + x-ratelimit-remaining: 0     wait until x-ratelimit-reset
    500 / 502 / 503 / 504 / 429        exponential backoff

A plain 403 (missing scope, blocked token) is returned to the caller
straight away. Waits are capped at :data:`MAX_RETRY_DELAY`; a reset
further out than that is not worth holding the batch for.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Final

import httpx

from clientkit import __version__
from clientkit.logging import get_logger

log = get_logger('clientkit.net')

DEFAULT_TIMEOUT: Final[float] = 30.0
GITHUB_API_VERSION: Final[str] = '2022-11-28'
JSON_MEDIA_TYPE: Final[str] = 'application/vnd.github+json'
RAW_MEDIA_TYPE: Final[str] = 'application/vnd.github.raw+json'

MAX_RETRIES: Final[int] = 3
RETRY_BACKOFF_BASE: Final[float] = 1.0
MAX_RETRY_DELAY: Final[float] = 60.0

RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})


def github_headers(token: str, *, accept: str = JSON_MEDIA_TYPE) -> dict[str, str]:
    """Request headers for the GitHub REST API."""
    return {
        'Authorization': f'Bearer {token}',
        'Accept': accept,
        'X-GitHub-Api-Version': GITHUB_API_VERSION,
        'User-Agent': f'clientkit/{__version__}',
    }


@asynccontextmanager
async def http_client(
    *,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> AsyncGenerator[httpx.AsyncClient]:
    """Open an async client that follows redirects.

    GitHub answers renamed repositories with a 301, so redirects are
    always followed.
    """
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers=headers or {},
        follow_redirects=True,
    ) as client:
        yield client


def _rate_limited(response: httpx.Response) -> bool:
    return response.headers.get('x-ratelimit-remaining') == '0'


def retry_delay(
    response: httpx.Response,
    attempt: int,
    *,
    backoff_base: float = RETRY_BACKOFF_BASE,
    now: float | None = None,
) -> float | None:
    """Seconds to wait before retrying ``response``, or ``None`` to give up.

    Args:
        response: The response just received.
        attempt: Zero-based attempt number.
        backoff_base: Base delay for exponential backoff.
        now: Current epoch time, for the ``x-ratelimit-reset`` header.
    """
    status = response.status_code
    throttled = status == 429 or (status == 403 and ('retry-after' in response.headers or _rate_limited(response)))
    if status not in RETRYABLE_STATUS_CODES and not throttled:
        return None

    retry_after = response.headers.get('retry-after', '')
    if retry_after.isdigit():
        return min(float(retry_after), MAX_RETRY_DELAY)
    if _rate_limited(response):
        reset = response.headers.get('x-ratelimit-reset', '')
        if reset.isdigit():
            wait = float(reset) - (time.time() if now is None else now)
            return min(max(wait, 0.0), MAX_RETRY_DELAY)
    return min(backoff_base * (2**attempt), MAX_RETRY_DELAY)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = MAX_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
    **kwargs: object,
) -> httpx.Response:
    """Send a GitHub request, retrying throttling and transient failures.

    Returns:
        The first response that is not retryable. A 4xx other than a
        rate limit is returned, not raised.

    Raises:
        httpx.HTTPStatusError: If the last attempt was still throttled
            or failing with a 5xx.
        httpx.TransportError: If the last attempt could not connect or
            timed out.
    """
    for attempt in range(max_retries + 1):
        last = attempt == max_retries
        try:
            response = await client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.WriteTimeout) as exc:
            if last:
                log.error('github_unreachable', method=method, url=url, error=str(exc), attempts=attempt + 1)
                raise
            delay = backoff_base * (2**attempt)
            log.warning('github_connection_retry', method=method, url=url, error=str(exc), attempt=attempt + 1, delay=delay)
            await asyncio.sleep(delay)
            continue

        delay = retry_delay(response, attempt, backoff_base=backoff_base)
        if delay is None:
            return response
        if last:
            log.error('github_retries_exhausted', method=method, url=url, status=response.status_code, attempts=attempt + 1)
            response.raise_for_status()
            return response
        log.warning(
            'github_retry',
            method=method,
            url=url,
            status=response.status_code,
            rate_limited=_rate_limited(response),
            attempt=attempt + 1,
            delay=delay,
        )
        await asyncio.sleep(delay)

    msg = f'request_with_retry: max_retries must be >= 0, got {max_retries}'
    raise ValueError(msg)


__all__ = [
    'DEFAULT_TIMEOUT',
    'GITHUB_API_VERSION',
    'JSON_MEDIA_TYPE',
    'MAX_RETRIES',
    'MAX_RETRY_DELAY',
    'RAW_MEDIA_TYPE',
    'RETRYABLE_STATUS_CODES',
    'github_headers',
    'http_client',
    'request_with_retry',
    'retry_delay',
]
