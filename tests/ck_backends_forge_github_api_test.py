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

"""Tests for the GitHub REST API forge backend.

Uses httpx mock transport to avoid real network calls.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from clientkit.backends.forge import Forge
from clientkit.backends.forge.github_api import GitHubAPIBackend, repo_from_remote_url
from clientkit.errors import ExternalServiceError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


def _mock_transport(responses: dict[str, tuple[int, str]], seen: list[httpx.Request] | None = None) -> Handler:
    """Create a mock transport handler keyed by URL substring."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        url = str(request.url)
        for fragment, (status, body) in responses.items():
            if fragment in url:
                return httpx.Response(status, text=body)
        return httpx.Response(404, text='Not found')

    return handler


def _make_client_cm(transport: Handler) -> Any:  # noqa: ANN401
    """Create a context manager that yields an httpx.AsyncClient with mock transport."""

    @asynccontextmanager
    async def _client_cm(**kw: Any) -> AsyncGenerator[httpx.AsyncClient]:  # noqa: ANN401
        async with httpx.AsyncClient(transport=httpx.MockTransport(transport)) as client:
            yield client

    return _client_cm


def _use(monkeypatch: pytest.MonkeyPatch, transport: Handler) -> None:
    monkeypatch.setattr('clientkit.backends.forge.github_api.http_client', _make_client_cm(transport))


@pytest.fixture()
def gh() -> GitHubAPIBackend:
    """Create a GitHubAPIBackend fixture."""
    return GitHubAPIBackend(owner='googleapis', repo='google-cloud-go', token='fake-token')


def _pr_json(number: int, *, merge_sha: str = 'm' * 40) -> str:
    return json.dumps({
        'number': number,
        'title': 'chore: librarian release pull request',
        'body': 'notes',
        'html_url': f'https://github.com/googleapis/google-cloud-go/pull/{number}',
        'labels': [{'name': 'release:pending'}],
        'base': {'ref': 'main'},
        'head': {'ref': 'librarian-x'},
        'merged_at': '2025-01-02T00:00:00Z',
        'merge_commit_sha': merge_sha,
    })


# ---------------------------------------------------------------------------
# Init / Auth
# ---------------------------------------------------------------------------


class TestInit:
    """Tests for construction."""

    def test_explicit_token(self) -> None:
        """An explicit token is used as a bearer token."""
        api = GitHubAPIBackend(owner='o', repo='r', token='tok')
        assert 'Bearer tok' in api._headers['Authorization']

    def test_env_token(self) -> None:
        """GITHUB_TOKEN is read from the environment."""
        with patch.dict('os.environ', {'GITHUB_TOKEN': 'env-tok', 'GH_TOKEN': ''}):
            api = GitHubAPIBackend(owner='o', repo='r')
            assert 'Bearer env-tok' in api._headers['Authorization']

    def test_no_token_raises(self) -> None:
        """Construction fails fast without a token."""
        with patch.dict('os.environ', {'GITHUB_TOKEN': '', 'GH_TOKEN': ''}):
            with pytest.raises(ValueError, match='GitHub API token required'):
                GitHubAPIBackend(owner='o', repo='r')

    def test_custom_base_url(self) -> None:
        """Enterprise endpoints are honored."""
        api = GitHubAPIBackend(owner='o', repo='r', token='t', base_url='https://ghe.corp.com/api/v3/')
        assert api._repo_url == 'https://ghe.corp.com/api/v3/repos/o/r'

    def test_repr_hides_token(self) -> None:
        """The token never appears in repr."""
        assert 'secret' not in repr(GitHubAPIBackend(owner='o', repo='r', token='secret'))

    def test_satisfies_protocol(self, gh: GitHubAPIBackend) -> None:
        """The backend is a Forge."""
        assert isinstance(gh, Forge)


class TestRepoFromRemoteUrl:
    """Tests for repo_from_remote_url."""

    @pytest.mark.parametrize(
        'url',
        [
            'https://github.com/googleapis/google-cloud-go.git',
            'https://github.com/googleapis/google-cloud-go',
            'git@github.com:googleapis/google-cloud-go.git',
        ],
    )
    def test_github_remotes(self, url: str) -> None:
        """HTTPS and SSH remotes are both understood."""
        assert repo_from_remote_url(url) == ('googleapis', 'google-cloud-go')

    def test_other_host(self) -> None:
        """Non-GitHub remotes are rejected."""
        with pytest.raises(ValueError):
            repo_from_remote_url('https://gitlab.com/o/r.git')


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestCreatePr:
    """Tests for create_pr."""

    @pytest.mark.asyncio()
    async def test_returns_url(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """The HTML URL is returned on stdout."""
        seen: list[httpx.Request] = []
        _use(monkeypatch, _mock_transport({'/pulls': (201, _pr_json(42))}, seen))
        result = await gh.create_pr(title='t', body='b', head='librarian-x', base='main')
        assert result.ok
        assert result.stdout == 'https://github.com/googleapis/google-cloud-go/pull/42'
        assert json.loads(seen[0].content) == {'title': 't', 'body': 'b', 'head': 'librarian-x', 'base': 'main', 'draft': False}

    @pytest.mark.asyncio()
    async def test_failure(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """A rejected request carries the status code."""
        _use(monkeypatch, _mock_transport({'/pulls': (422, 'Validation Failed')}))
        result = await gh.create_pr(title='t', head='h')
        assert result.return_code == 422
        assert 'Validation Failed' in result.stderr

    @pytest.mark.asyncio()
    async def test_draft(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """A draft request sets the draft flag in the payload."""
        seen: list[httpx.Request] = []
        _use(monkeypatch, _mock_transport({'/pulls': (201, _pr_json(7))}, seen))
        result = await gh.create_pr(title='t', head='h', draft=True)
        assert result.ok
        assert json.loads(seen[0].content)['draft'] is True


class TestUnreachable:
    """Tests for GitHub staying throttled or unreachable."""

    @pytest.mark.asyncio()
    async def test_connection_failure_is_external_service_error(
        self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Connection failures that outlast the retries become ExternalServiceError."""

        async def no_sleep(_delay: float) -> None:
            return None

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('refused', request=request)

        monkeypatch.setattr('clientkit.net.asyncio.sleep', no_sleep)
        _use(monkeypatch, handler)
        with pytest.raises(ExternalServiceError):
            await gh.create_pr(title='t', head='h')

    @pytest.mark.asyncio()
    async def test_rate_limit_exhausted_on_query(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """A query still rate limited after the retries raises ExternalServiceError."""
        calls: list[int] = []

        async def no_sleep(_delay: float) -> None:
            return None

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(403, headers={'x-ratelimit-remaining': '0'}, text='rate limited')

        monkeypatch.setattr('clientkit.net.asyncio.sleep', no_sleep)
        _use(monkeypatch, handler)
        with pytest.raises(ExternalServiceError):
            await gh.get_pr(1)
        assert len(calls) == 4


class TestLabelsTagsReleases:
    """Tests for labels, tags and releases."""

    @pytest.mark.asyncio()
    async def test_replace_labels(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Labels are removed one by one, then the new ones are added."""
        seen: list[httpx.Request] = []
        _use(monkeypatch, _mock_transport({'/issues/7/labels': (200, '[]')}, seen))
        result = await gh.replace_labels(7, remove=['release:pending'], add=['release:done'])
        assert result.ok
        assert [r.method for r in seen] == ['DELETE', 'POST']
        assert str(seen[0].url).endswith('/issues/7/labels/release%3Apending')
        assert json.loads(seen[1].content) == {'labels': ['release:done']}

    @pytest.mark.asyncio()
    async def test_remove_missing_label(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Removing a label that is not there is fine."""
        _use(monkeypatch, _mock_transport({}))
        assert (await gh.remove_labels(7, ['nope'])).ok

    @pytest.mark.asyncio()
    async def test_create_tag(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Tags are created as refs."""
        seen: list[httpx.Request] = []
        _use(monkeypatch, _mock_transport({'/git/refs': (201, '{}')}, seen))
        assert (await gh.create_tag('release-7', 'abc')).ok
        assert json.loads(seen[0].content) == {'ref': 'refs/tags/release-7', 'sha': 'abc'}

    @pytest.mark.asyncio()
    async def test_create_release(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Releases target the merge commit."""
        seen: list[httpx.Request] = []
        _use(monkeypatch, _mock_transport({'/releases': (201, '{}')}, seen))
        result = await gh.create_release('a-1.3.0', name='a 1.3.0', body='notes', target_commitish='abc')
        assert result.ok
        assert json.loads(seen[0].content) == {
            'tag_name': 'a-1.3.0',
            'name': 'a 1.3.0',
            'body': 'notes',
            'target_commitish': 'abc',
        }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    """Tests for read-only queries."""

    @pytest.mark.asyncio()
    async def test_get_pr_normalized(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Pull requests are normalized to the Forge keys."""
        _use(monkeypatch, _mock_transport({'/pulls/7': (200, _pr_json(7))}))
        pr = await gh.get_pr(7)
        assert pr['number'] == 7
        assert pr['baseRefName'] == 'main'
        assert pr['mergeCommit'] == {'oid': 'm' * 40}
        assert pr['labels'] == ['release:pending']

    @pytest.mark.asyncio()
    async def test_get_pr_failure(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """A failed query raises."""
        _use(monkeypatch, _mock_transport({'/pulls/7': (403, 'Forbidden')}))
        with pytest.raises(ExternalServiceError):
            await gh.get_pr(7)

    @pytest.mark.asyncio()
    async def test_search_merged_prs(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Search hits are re-fetched for their merge commits."""
        seen: list[httpx.Request] = []
        responses = {
            '/search/issues': (200, json.dumps({'items': [{'number': 7}]})),
            '/pulls/7': (200, _pr_json(7)),
        }
        _use(monkeypatch, _mock_transport(responses, seen))
        prs = await gh.search_merged_prs('label:release:pending')
        assert [p['number'] for p in prs] == [7]
        query = seen[0].url.params['q']
        assert query == 'repo:googleapis/google-cloud-go is:pr is:merged label:release:pending'

    @pytest.mark.asyncio()
    async def test_raw_content(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """File text is returned as-is."""
        _use(monkeypatch, _mock_transport({'/contents/.librarian/state.yaml': (200, 'image: img\n')}))
        assert await gh.raw_content('.librarian/state.yaml', ref='main') == 'image: img\n'

    @pytest.mark.asyncio()
    async def test_raw_content_missing(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """A missing file is empty text."""
        _use(monkeypatch, _mock_transport({}))
        assert await gh.raw_content('.librarian/config.yaml', ref='main') == ''

    @pytest.mark.asyncio()
    async def test_raw_content_error(self, gh: GitHubAPIBackend, monkeypatch: pytest.MonkeyPatch) -> None:
        """Other failures raise."""
        _use(monkeypatch, _mock_transport({'/contents/': (401, 'Unauthorized')}))
        with pytest.raises(ExternalServiceError):
            await gh.raw_content('.librarian/state.yaml', ref='main')
