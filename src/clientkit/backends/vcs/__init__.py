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

"""VCS protocol for clientkit.

The :class:`VCS` protocol is the version-control capability the
classification and pipeline code needs. Two repositories are seen
through it: the language repository being generated and released, and
the API source repository the libraries are generated from.

Implementations:

- :class:`~clientkit.backends.vcs.git.GitCLIBackend` - ``git`` CLI
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from clientkit.backends._run import CommandResult
from clientkit.backends.vcs.git import GitCLIBackend as GitCLIBackend
from clientkit.commits import RawCommit

__all__ = [
    'GitCLIBackend',
    'VCS',
]


@runtime_checkable
class VCS(Protocol):
    """Protocol for version control operations."""

    async def is_clean(self) -> bool:
        """Return ``True`` if the working tree is clean."""
        ...

    async def head_hash(self) -> str:
        """Return the current HEAD commit SHA."""
        ...

    async def remote_url(self, remote: str = 'origin') -> str:
        """Return the URL of ``remote``, or empty string if unset."""
        ...

    async def commits_for_paths(self, paths: list[str], *, since: str = '') -> list[RawCommit]:
        """Return commits touching ``paths`` after ``since``, newest first.

        Args:
            paths: Restrict to commits touching these paths.
            since: Exclusive lower bound (tag or SHA); empty for all history.
        """
        ...

    async def get_commit(self, sha: str) -> RawCommit:
        """Return commit ``sha``."""
        ...

    async def latest_commit(self, path: str) -> RawCommit:
        """Return the most recent commit touching ``path``."""
        ...

    async def uncommitted_files(self) -> list[str]:
        """Return paths changed in the working tree, untracked included."""
        ...

    async def changed_files(self, sha: str) -> list[str]:
        """Return the paths changed by commit ``sha``."""
        ...

    async def content_hash(self, sha: str, path: str) -> str:
        """Return the content hash of ``path`` at ``sha``.

        Returns an empty string when ``path`` does not exist at ``sha``.
        Raises when ``sha`` itself cannot be resolved.
        """
        ...

    async def checkout_branch(
        self,
        branch: str,
        *,
        create: bool = False,
    ) -> CommandResult:
        """Switch to a branch, optionally creating it."""
        ...

    async def checkout_commit(self, sha: str) -> CommandResult:
        """Check out ``sha`` with a detached HEAD."""
        ...

    async def add_all(self) -> CommandResult:
        """Stage every change in the working tree."""
        ...

    async def commit(self, message: str) -> CommandResult:
        """Commit staged changes."""
        ...

    async def push(
        self,
        branch: str,
        *,
        remote: str = 'origin',
    ) -> CommandResult:
        """Push ``branch`` to ``remote``."""
        ...

    async def restore(self, paths: list[str]) -> CommandResult:
        """Discard working-tree changes to tracked files under ``paths``."""
        ...

    async def clean_untracked(self, paths: list[str]) -> CommandResult:
        """Delete untracked files under ``paths``."""
        ...
