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

"""Forge protocol for clientkit.

The :class:`Forge` protocol defines the async interface for code-hosting
operations: pull requests, labels, comments, tags and releases, plus
reading a file at a ref. Only the commit/push phase and release tagging
use it. Implementations:

- :class:`~clientkit.backends.forge.github_api.GitHubAPIBackend` - GitHub REST API
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from clientkit.backends._run import CommandResult
from clientkit.backends.forge.github_api import GitHubAPIBackend as GitHubAPIBackend, repo_from_remote_url

__all__ = [
    'Forge',
    'GitHubAPIBackend',
    'repo_from_remote_url',
]


@runtime_checkable
class Forge(Protocol):
    """Protocol for code forge operations."""

    @property
    def owner(self) -> str:
        """Repository owner."""
        ...

    @property
    def repo(self) -> str:
        """Repository name."""
        ...

    async def create_pr(
        self,
        *,
        title: str,
        body: str = '',
        head: str,
        base: str = 'main',
        draft: bool = False,
    ) -> CommandResult:
        """Create a pull request; ``stdout`` is its URL on success."""
        ...

    async def add_labels(self, pr_number: int, labels: list[str]) -> CommandResult:
        """Add labels to a pull request."""
        ...

    async def replace_labels(
        self,
        pr_number: int,
        *,
        remove: list[str],
        add: list[str],
    ) -> CommandResult:
        """Swap labels on a pull request."""
        ...

    async def create_comment(self, pr_number: int, body: str) -> CommandResult:
        """Post a comment on a pull request."""
        ...

    async def create_tag(self, tag: str, sha: str) -> CommandResult:
        """Create tag ``tag`` at ``sha``."""
        ...

    async def create_release(
        self,
        tag: str,
        *,
        name: str = '',
        body: str = '',
        target_commitish: str = '',
    ) -> CommandResult:
        """Create a release for ``tag``."""
        ...

    async def get_pr(self, pr_number: int) -> dict[str, Any]:
        """Fetch one pull request.

        Keys: ``number``, ``title``, ``body``, ``url``, ``labels``,
        ``baseRefName``, ``headRefName``, ``mergedAt``, ``mergeCommit``.
        """
        ...

    async def search_merged_prs(self, query: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return merged pull requests matching a search query."""
        ...

    async def raw_content(self, path: str, *, ref: str) -> str:
        """Return the text of ``path`` at ``ref``, or empty string if absent."""
        ...
