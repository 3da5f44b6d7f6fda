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

"""GitHub REST API forge backend for clientkit.

Implements the :class:`~clientkit.backends.forge.Forge` protocol using
the GitHub REST API v3 via ``httpx``.

Authentication:

    Resolves a token in order of precedence:

    1. ``token`` constructor parameter.
    2. ``GITHUB_TOKEN`` env var (set automatically by GitHub Actions).
    3. ``GH_TOKEN`` env var (used by the ``gh`` CLI).

    If none are set, the backend raises ``ValueError`` at construction
    to fail fast rather than silently on the first API call.

Mutating calls return a :class:`CommandResult` (non-zero ``return_code``
is the HTTP status on failure). Query calls raise
:class:`~clientkit.errors.ExternalServiceError` on failure, since an
empty answer would be indistinguishable from "nothing found".
Both kinds raise it when GitHub stays throttled or unreachable after
the retries in :mod:`clientkit.net`.

Usage::

    from clientkit.backends.forge.github_api import GitHubAPIBackend

    forge = GitHubAPIBackend(owner='googleapis', repo='google-cloud-go')
    await forge.create_release('secretmanager-1.3.0', name='secretmanager 1.3.0', body=notes)

.. seealso::

    `GitHub REST API <https://docs.github.com/en/rest>`_
"""

from __future__ import annotations

import json
import os
import re
from typing import Any
from urllib.parse import quote

import httpx

from clientkit.backends._run import CommandResult
from clientkit.errors import ExternalServiceError
from clientkit.logging import get_logger
from clientkit.net import DEFAULT_TIMEOUT, JSON_MEDIA_TYPE, RAW_MEDIA_TYPE, github_headers, http_client, request_with_retry

log = get_logger('clientkit.backends.forge.github_api')

# GitHub REST API base URL.
_DEFAULT_BASE_URL = 'https://api.github.com'

_REMOTE_RE = re.compile(r'github\.com[:/](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$')


def repo_from_remote_url(url: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` from a GitHub remote URL.

    Accepts both ``https://github.com/o/r.git`` and ``git@github.com:o/r.git``.

    Raises:
        ValueError: If ``url`` is not a GitHub remote.
    """
    match = _REMOTE_RE.search(url.strip())
    if not match:
        msg = f'{url!r} is not a GitHub remote'
        raise ValueError(msg)
    return match.group('owner'), match.group('repo')


def _normalize_pr(data: dict[str, Any]) -> dict[str, Any]:
    return {
        'number': data.get('number', 0),
        'title': data.get('title', '') or '',
        'body': data.get('body', '') or '',
        'url': data.get('html_url', '') or '',
        'labels': [lbl.get('name', '') for lbl in data.get('labels', [])],
        'baseRefName': (data.get('base') or {}).get('ref', ''),
        'headRefName': (data.get('head') or {}).get('ref', ''),
        'mergedAt': data.get('merged_at') or '',
        'mergeCommit': {'oid': data.get('merge_commit_sha') or ''},
    }


class GitHubAPIBackend:
    """Forge implementation using the GitHub REST API.

    Args:
        owner: Repository owner (e.g., ``"googleapis"``).
        repo: Repository name (e.g., ``"google-cloud-go"``).
        token: GitHub API token. Falls back to ``GITHUB_TOKEN`` or
            ``GH_TOKEN`` env vars.
        base_url: API base URL (override for GitHub Enterprise Server).
        timeout: HTTP request timeout in seconds.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        token: str = '',
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize with owner, repo, and API token."""
        self._owner = owner
        self._repo = repo
        self._base_url = base_url.rstrip('/')
        self._repo_url = f'{self._base_url}/repos/{owner}/{repo}'
        self._timeout = timeout

        # Resolve auth: explicit token > GITHUB_TOKEN > GH_TOKEN.
        resolved_token = token or os.environ.get('GITHUB_TOKEN', '') or os.environ.get('GH_TOKEN', '')
        if not resolved_token:
            msg = 'GitHub API token required: pass token= or set GITHUB_TOKEN or GH_TOKEN env var.'
            raise ValueError(msg)

        self._token = resolved_token
        self._headers = github_headers(resolved_token)

    def __repr__(self) -> str:
        """Return a safe repr that never exposes the API token."""
        return f'GitHubAPIBackend(owner={self._owner!r}, repo={self._repo!r})'

    @property
    def owner(self) -> str:
        """Repository owner."""
        return self._owner

    @property
    def repo(self) -> str:
        """Repository name."""
        return self._repo

    async def _request(self, method: str, url: str, *, accept: str = JSON_MEDIA_TYPE, **kwargs: object) -> httpx.Response:
        headers = self._headers if accept == JSON_MEDIA_TYPE else github_headers(self._token, accept=accept)
        async with http_client(headers=headers, timeout=self._timeout) as client:
            try:
                return await request_with_retry(client, method, url, **kwargs)
            except httpx.HTTPError as exc:
                raise ExternalServiceError(
                    f'GitHub {method} {url} failed: {exc}',
                    hint='GitHub kept throttling or could not be reached; retry later.',
                ) from exc

    async def _send(self, method: str, url: str, **kwargs: object) -> CommandResult:
        response = await self._request(method, url, **kwargs)
        return CommandResult(
            command=[method, url],
            return_code=0 if response.is_success else response.status_code,
            stdout=response.text,
            stderr='' if response.is_success else response.text,
        )

    async def _get_json(self, url: str, *, what: str) -> Any:  # noqa: ANN401 - JSON payload
        response = await self._request('GET', url)
        if response.status_code != 200:
            raise ExternalServiceError(
                f'GitHub returned {response.status_code} fetching {what}',
                hint='Check that the token has repo scope.',
            )
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as exc:
            raise ExternalServiceError(f'GitHub returned invalid JSON fetching {what}') from exc

    async def create_pr(
        self,
        *,
        title: str,
        body: str = '',
        head: str,
        base: str = 'main',
        draft: bool = False,
    ) -> CommandResult:
        """Create a pull request, optionally as a draft.

        On success ``stdout`` is the PR's HTML URL.
        """
        url = f'{self._repo_url}/pulls'
        payload = {'title': title, 'body': body, 'head': head, 'base': base, 'draft': draft}
        result = await self._send('POST', url, json=payload)
        log.info('create_pr', title=title, draft=draft, return_code=result.return_code)
        if result.ok:
            try:
                return CommandResult(command=result.command, return_code=0, stdout=json.loads(result.stdout)['html_url'])
            except (ValueError, KeyError):
                pass
        return result

    async def add_labels(self, pr_number: int, labels: list[str]) -> CommandResult:
        """Add labels to a pull request."""
        url = f'{self._repo_url}/issues/{pr_number}/labels'
        result = await self._send('POST', url, json={'labels': labels})
        log.info('add_labels', pr=pr_number, labels=labels, return_code=result.return_code)
        return result

    async def remove_labels(self, pr_number: int, labels: list[str]) -> CommandResult:
        """Remove labels from a pull request.

        GitHub requires one DELETE per label. A label that is not present
        (404) is not a failure.
        """
        base = f'{self._repo_url}/issues/{pr_number}/labels'
        result = CommandResult(command=['DELETE', base], return_code=0)
        for label in labels:
            result = await self._send('DELETE', f'{base}/{quote(label, safe="")}')
            log.info('remove_label', pr=pr_number, label=label, return_code=result.return_code)
            if result.return_code == 404:
                result = CommandResult(command=result.command, return_code=0)
            if not result.ok:
                return result
        return result

    async def replace_labels(
        self,
        pr_number: int,
        *,
        remove: list[str],
        add: list[str],
    ) -> CommandResult:
        """Remove ``remove`` then add ``add`` on a pull request."""
        result = await self.remove_labels(pr_number, remove)
        if not result.ok:
            return result
        return await self.add_labels(pr_number, add)

    async def create_comment(self, pr_number: int, body: str) -> CommandResult:
        """Post a comment on a pull request."""
        url = f'{self._repo_url}/issues/{pr_number}/comments'
        result = await self._send('POST', url, json={'body': body})
        log.info('create_comment', pr=pr_number, return_code=result.return_code)
        return result

    async def create_tag(self, tag: str, sha: str) -> CommandResult:
        """Create a lightweight tag ``tag`` pointing at ``sha``."""
        url = f'{self._repo_url}/git/refs'
        result = await self._send('POST', url, json={'ref': f'refs/tags/{tag}', 'sha': sha})
        log.info('create_tag', tag=tag, sha=sha[:8], return_code=result.return_code)
        return result

    async def create_release(
        self,
        tag: str,
        *,
        name: str = '',
        body: str = '',
        target_commitish: str = '',
    ) -> CommandResult:
        """Create a GitHub release for an existing or new tag."""
        url = f'{self._repo_url}/releases'
        payload: dict[str, Any] = {'tag_name': tag, 'name': name or tag, 'body': body}
        if target_commitish:
            payload['target_commitish'] = target_commitish
        result = await self._send('POST', url, json=payload)
        log.info('create_release', tag=tag, return_code=result.return_code)
        return result

    async def get_pr(self, pr_number: int) -> dict[str, Any]:
        """Fetch one pull request, normalized to Forge contract keys."""
        data = await self._get_json(f'{self._repo_url}/pulls/{pr_number}', what=f'pull request #{pr_number}')
        return _normalize_pr(data)

    async def search_merged_prs(self, query: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return merged pull requests in this repository matching ``query``.

        ``query`` uses GitHub search syntax and is scoped to this
        repository. The search API omits merge commits, so each hit is
        re-fetched.
        """
        q = f'repo:{self._owner}/{self._repo} is:pr is:merged {query}'
        data = await self._get_json(
            f'{self._base_url}/search/issues?q={quote(q)}&per_page={limit}',
            what='merged pull requests',
        )
        return [await self.get_pr(item['number']) for item in data.get('items', [])]

    async def raw_content(self, path: str, *, ref: str) -> str:
        """Return the text of ``path`` at ``ref``, or empty string if absent."""
        url = f'{self._repo_url}/contents/{quote(path)}?ref={quote(ref, safe="")}'
        response = await self._request('GET', url, accept=RAW_MEDIA_TYPE)
        if response.status_code == 404:
            return ''
        if response.status_code != 200:
            raise ExternalServiceError(f'GitHub returned {response.status_code} fetching {path}@{ref}')
        return response.text


__all__ = [
    'GitHubAPIBackend',
    'repo_from_remote_url',
]
