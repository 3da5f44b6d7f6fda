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

"""Fake Forge backend for tests.

Provides a configurable :class:`FakeForge` that satisfies the full
:class:`~clientkit.backends.forge.Forge` protocol. Records PR, comment,
label, tag and release operations for assertions.
"""

from __future__ import annotations

from typing import Any

from clientkit.backends._run import CommandResult
from tests._fakes._vcs import FAILED, OK


class FakeForge:
    """Configurable Forge test double."""

    def __init__(
        self,
        *,
        owner: str = 'googleapis',
        repo: str = 'google-cloud-go',
        prs: dict[int, dict[str, Any]] | None = None,
        contents: dict[tuple[str, str], str] | None = None,
        next_pr_number: int = 42,
        fail: set[str] | None = None,
    ) -> None:
        """Initialize with canned pull requests and file contents.

        Args:
            owner: Repository owner.
            repo: Repository name.
            prs: Pull requests by number, returned by ``get_pr`` and
                ``search_merged_prs``.
            contents: File text per ``(path, ref)``.
            next_pr_number: Number given to the next created PR.
            fail: Names of mutating methods that should return a failed
                result.
        """
        self._owner = owner
        self._repo = repo
        self._prs = prs or {}
        self._contents = contents or {}
        self._next = next_pr_number
        self._fail = fail or set()
        self.prs_created: list[dict[str, Any]] = []
        self.comments: list[tuple[int, str]] = []
        self.labels_added: list[tuple[int, list[str]]] = []
        self.labels_replaced: list[tuple[int, list[str], list[str]]] = []
        self.tags_created: list[tuple[str, str]] = []
        self.releases_created: list[dict[str, Any]] = []
        self.queries: list[str] = []

    @property
    def owner(self) -> str:
        """Repository owner."""
        return self._owner

    @property
    def repo(self) -> str:
        """Repository name."""
        return self._repo

    def _result(self, name: str, stdout: str = '') -> CommandResult:
        if name in self._fail:
            return FAILED
        return CommandResult(command=[], return_code=0, stdout=stdout) if stdout else OK

    async def create_pr(
        self,
        *,
        title: str,
        body: str = '',
        head: str,
        base: str = 'main',
        draft: bool = False,
    ) -> CommandResult:
        """Record PR creation and return its URL."""
        number = self._next
        self._next += 1
        self.prs_created.append({'number': number, 'title': title, 'body': body, 'head': head, 'base': base, 'draft': draft})
        return self._result('create_pr', f'https://github.com/{self._owner}/{self._repo}/pull/{number}\n')

    async def add_labels(self, pr_number: int, labels: list[str]) -> CommandResult:
        """Record added labels."""
        self.labels_added.append((pr_number, list(labels)))
        return self._result('add_labels')

    async def replace_labels(
        self,
        pr_number: int,
        *,
        remove: list[str],
        add: list[str],
    ) -> CommandResult:
        """Record swapped labels."""
        self.labels_replaced.append((pr_number, list(remove), list(add)))
        return self._result('replace_labels')

    async def create_comment(self, pr_number: int, body: str) -> CommandResult:
        """Record the comment."""
        self.comments.append((pr_number, body))
        return self._result('create_comment')

    async def create_tag(self, tag: str, sha: str) -> CommandResult:
        """Record the tag."""
        self.tags_created.append((tag, sha))
        return self._result('create_tag')

    async def create_release(
        self,
        tag: str,
        *,
        name: str = '',
        body: str = '',
        target_commitish: str = '',
    ) -> CommandResult:
        """Record release creation."""
        self.releases_created.append({'tag': tag, 'name': name, 'body': body, 'target_commitish': target_commitish})
        return self._result('create_release')

    async def get_pr(self, pr_number: int) -> dict[str, Any]:
        """Return the canned pull request."""
        return self._prs[pr_number]

    async def search_merged_prs(self, query: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Record the query and return every canned pull request."""
        self.queries.append(query)
        return [self._prs[n] for n in sorted(self._prs)][:limit]

    async def raw_content(self, path: str, *, ref: str) -> str:
        """Return canned file text, or empty string."""
        return self._contents.get((path, ref), '')
