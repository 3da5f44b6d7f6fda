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

"""Git VCS backend for clientkit.

The :class:`GitCLIBackend` implements the :class:`VCS` protocol by
delegating to ``git`` via :func:`run_command`.

All methods are async; blocking subprocess calls are dispatched to
``asyncio.to_thread()`` to avoid blocking the event loop. Query methods
raise :class:`subprocess.CalledProcessError` when ``git`` fails, so that
callers can map the failure to the right domain error.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

from clientkit.backends._run import CommandResult, run_command
from clientkit.commits import RawCommit
from clientkit.logging import get_logger

log = get_logger('clientkit.backends.git')

# Unit and record separators keep multi-line commit bodies intact.
_FIELD_SEP = '\x1f'
_RECORD_SEP = '\x1e'


class GitCLIBackend:
    """Default :class:`~clientkit.backends.vcs.VCS` implementation using ``git``.

    Args:
        repo_root: Path to the git repository root.
    """

    def __init__(self, repo_root: Path) -> None:
        """Initialize with the git repository root path."""
        self._root = repo_root

    @property
    def root(self) -> Path:
        """The repository root."""
        return self._root

    def _git(self, *args: str, check: bool = False) -> CommandResult:
        """Run a git command synchronously (called via to_thread)."""
        return run_command(['git', *args], cwd=self._root, check=check)

    async def is_clean(self) -> bool:
        """Return ``True`` if the working tree is clean."""
        result = await asyncio.to_thread(self._git, 'status', '--porcelain')
        return result.stdout.strip() == ''

    async def head_hash(self) -> str:
        """Return the current HEAD commit SHA."""
        result = await asyncio.to_thread(self._git, 'rev-parse', 'HEAD', check=True)
        return result.stdout.strip()

    async def remote_url(self, remote: str = 'origin') -> str:
        """Return the URL of ``remote``, or empty string if unset."""
        result = await asyncio.to_thread(self._git, 'remote', 'get-url', remote)
        return result.stdout.strip() if result.ok else ''

    async def commits_for_paths(self, paths: list[str], *, since: str = '') -> list[RawCommit]:
        """Return non-merge commits touching ``paths``, newest first.

        Args:
            paths: Restrict to commits touching these paths.
            since: Exclusive lower bound (tag or SHA). Empty means the
                whole history.
        """
        if not paths:
            return []
        revision = f'{since}..HEAD' if since else 'HEAD'
        return await self._log('--no-merges', revision, '--', *paths)

    async def get_commit(self, sha: str) -> RawCommit:
        """Return commit ``sha``."""
        commits = await self._log('-1', sha)
        if not commits:
            msg = f'commit {sha} not found'
            raise LookupError(msg)
        return commits[0]

    async def latest_commit(self, path: str) -> RawCommit:
        """Return the most recent commit touching ``path``."""
        commits = await self._log('-1', 'HEAD', '--', path)
        if not commits:
            msg = f'no commit touches {path}'
            raise LookupError(msg)
        return commits[0]

    async def _log(self, *args: str) -> list[RawCommit]:
        fmt = f'--format=%H{_FIELD_SEP}%cI{_FIELD_SEP}%B{_RECORD_SEP}'
        result = await asyncio.to_thread(self._git, 'log', fmt, *args, check=True)
        commits: list[RawCommit] = []
        for record in result.stdout.split(_RECORD_SEP):
            record = record.strip('\n')
            if not record:
                continue
            sha, when, message = record.split(_FIELD_SEP, 2)
            commits.append(RawCommit(sha=sha.strip(), message=message, when=datetime.fromisoformat(when)))
        return commits

    async def uncommitted_files(self) -> list[str]:
        """Return tracked files with changes plus untracked files."""
        changed = await asyncio.to_thread(self._git, 'diff', '--name-only', 'HEAD', check=True)
        untracked = await asyncio.to_thread(self._git, 'ls-files', '--others', '--exclude-standard', check=True)
        return [line for line in (*changed.stdout.splitlines(), *untracked.stdout.splitlines()) if line]

    async def changed_files(self, sha: str) -> list[str]:
        """Return paths added, removed or modified by commit ``sha``.

        Renames are reported as a removal plus an addition.
        """
        result = await asyncio.to_thread(
            self._git, 'diff-tree', '--no-commit-id', '--name-only', '-r', '--root', '--no-renames', sha, check=True
        )
        return [line for line in result.stdout.splitlines() if line]

    async def content_hash(self, sha: str, path: str) -> str:
        """Return the object hash of ``path`` at ``sha``.

        Returns an empty string if ``path`` does not exist at ``sha``.
        """
        result = await asyncio.to_thread(self._git, 'ls-tree', sha, '--', path.rstrip('/'), check=True)
        line = result.stdout.strip()
        if not line:
            return ''
        # "<mode> <type> <object>\t<path>"
        return line.split('\t', 1)[0].split()[2]

    async def checkout_branch(
        self,
        branch: str,
        *,
        create: bool = False,
    ) -> CommandResult:
        """Switch to a branch, optionally creating it."""
        if create:
            log.info('checkout_branch_create', branch=branch)
            return await asyncio.to_thread(self._git, 'checkout', '-B', branch)
        log.info('checkout_branch', branch=branch)
        return await asyncio.to_thread(self._git, 'checkout', branch)

    async def checkout_commit(self, sha: str) -> CommandResult:
        """Check out ``sha`` with a detached HEAD."""
        log.info('checkout_commit', sha=sha[:8])
        return await asyncio.to_thread(self._git, 'checkout', '--detach', sha)

    async def add_all(self) -> CommandResult:
        """Stage every change in the working tree."""
        return await asyncio.to_thread(self._git, 'add', '-A')

    async def commit(self, message: str) -> CommandResult:
        """Commit staged changes."""
        log.info('commit', message=message[:80])
        return await asyncio.to_thread(self._git, 'commit', '-m', message)

    async def push(
        self,
        branch: str,
        *,
        remote: str = 'origin',
    ) -> CommandResult:
        """Push ``branch`` to ``remote`` and set it as upstream."""
        log.info('push', remote=remote, branch=branch)
        return await asyncio.to_thread(self._git, 'push', '--set-upstream', remote, branch)

    async def restore(self, paths: list[str]) -> CommandResult:
        """Discard working-tree changes to tracked files under ``paths``."""
        log.info('restore', paths=paths)
        return await asyncio.to_thread(self._git, 'restore', '--', *paths)

    async def clean_untracked(self, paths: list[str]) -> CommandResult:
        """Delete untracked files under ``paths``."""
        log.info('clean_untracked', paths=paths)
        return await asyncio.to_thread(self._git, 'clean', '-f', '-d', '--', *paths)


__all__ = [
    'GitCLIBackend',
]
