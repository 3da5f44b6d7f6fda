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

"""Path filtering and library attribution for commits.

Decides whether a commit's changed files matter to a library, and which
libraries a parsed commit belongs to.

Path matching is segment-aware: a root ``ai`` owns ``ai/x.go`` but not
``aiplatform/x.go``. A root of exactly ``.`` owns every file.

Usage::

    from clientkit.attribution import included_for_release, resolve_library_ids

    included_for_release(['ai/x.go'], ['ai'], [])  # True
    resolve_library_ids(commit)  # {'foo', 'bar'}
"""

from __future__ import annotations

import posixpath
from collections.abc import Callable, Iterable, Sequence
from pathlib import PurePosixPath

from clientkit.backends.vcs import VCS
from clientkit.commits import LIBRARY_IDS_FOOTER, ConventionalCommit, RawCommit, parse_commits
from clientkit.errors import AttributionError, CommitParseError
from clientkit.logging import get_logger
from clientkit.state import Library

logger = get_logger(__name__)


def is_under_path(file: str, root: str) -> bool:
    """Return ``True`` if ``file`` is ``root`` or lies beneath it."""
    if root == '.':
        return True
    return PurePosixPath(posixpath.normpath(file)).is_relative_to(posixpath.normpath(root))


def is_under_any_path(file: str, roots: Iterable[str]) -> bool:
    """Return ``True`` if ``file`` lies beneath any of ``roots``."""
    return any(is_under_path(file, root) for root in roots)


def included_for_release(files: Iterable[str], source_roots: Sequence[str], exclude_paths: Sequence[str]) -> bool:
    """At least one file is under a source root and not under an exclude path."""
    return any(is_under_any_path(f, source_roots) and not is_under_any_path(f, exclude_paths) for f in files)


def included_for_generation(files: Iterable[str], api_paths: Sequence[str]) -> bool:
    """At least one file is under an API path."""
    return any(is_under_any_path(f, api_paths) for f in files)


def resolve_library_ids(commit: ConventionalCommit) -> set[str]:
    """Return the libraries a commit is attributed to.

    The ``Library-IDs`` footer wins when present; otherwise the commit's
    direct ``library_id``, if any.
    """
    footer = commit.footers.get(LIBRARY_IDS_FOOTER)
    if footer is not None:
        return {lid.strip() for lid in footer.split(',') if lid.strip()}
    if commit.library_id:
        return {commit.library_id}
    return set()


def filter_by_library(commits: Iterable[ConventionalCommit], library_id: str) -> list[ConventionalCommit]:
    """Keep only commits attributed to ``library_id``."""
    return [c for c in commits if library_id in resolve_library_ids(c)]


async def attributed_commits(
    vcs: VCS,
    library: Library,
    commits: Iterable[RawCommit],
    files_filter: Callable[[list[str]], bool],
) -> list[ConventionalCommit]:
    """Parse and attribute raw commits to ``library``.

    Commits whose changed files fail ``files_filter`` are dropped before
    parsing. Empty commit messages are logged and skipped.

    Raises:
        AttributionError: If the VCS cannot list a commit's changed files.
    """
    results: list[ConventionalCommit] = []
    for raw in commits:
        try:
            files = await vcs.changed_files(raw.sha)
        except Exception as exc:
            raise AttributionError(
                f'failed to list changed files of {raw.sha[:8]} for {library.id}: {exc}',
            ) from exc
        if not files_filter(files):
            continue
        try:
            parsed = parse_commits(raw, library.id)
        except CommitParseError as exc:
            logger.warning('commit_skipped', library=library.id, sha=raw.sha[:8], reason=str(exc))
            continue
        results.extend(filter_by_library(parsed, library.id))
    return results


async def commits_since_last_release(vcs: VCS, library: Library, tag: str) -> list[ConventionalCommit]:
    """Conventional commits for ``library`` in the language repo since ``tag``.

    An empty ``tag`` means the whole history.

    Raises:
        AttributionError: If git cannot walk the history, for example
            because ``tag`` does not exist.
    """
    try:
        raw = await vcs.commits_for_paths(library.source_roots, since=tag)
    except Exception as exc:
        raise AttributionError(
            f'failed to list commits for {library.id} since {tag or "the first commit"}: {exc}',
        ) from exc
    return await attributed_commits(
        vcs,
        library,
        raw,
        lambda files: included_for_release(files, library.source_roots, library.release_exclude_paths),
    )


async def commits_since_last_generation(source: VCS, library: Library) -> list[ConventionalCommit]:
    """Conventional commits in the API source repo since the last generation.

    Raises:
        AttributionError: If ``last_generated_commit`` is unknown to the
            API source repository.
    """
    if not library.last_generated_commit:
        logger.info('no_last_generated_commit', library=library.id)
        return []
    api_paths = library.api_paths
    try:
        raw = await source.commits_for_paths(api_paths, since=library.last_generated_commit)
    except Exception as exc:
        raise AttributionError(
            f'failed to list API commits for {library.id} since {library.last_generated_commit[:8]}: {exc}',
        ) from exc
    return await attributed_commits(
        source,
        library,
        raw,
        lambda files: included_for_generation(files, api_paths),
    )


__all__ = [
    'attributed_commits',
    'commits_since_last_generation',
    'commits_since_last_release',
    'filter_by_library',
    'included_for_generation',
    'included_for_release',
    'is_under_any_path',
    'is_under_path',
    'resolve_library_ids',
]
