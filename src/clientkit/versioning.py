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

"""Version derivation from conventional commits.

Classifies each commit attributed to a library, takes the strongest
change level, and steps the library's current version with
`semver <https://python-semver.readthedocs.io/>`_.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ChangeLevel         │ How big a change is: none, patch, minor or    │
    │                     │ major. The biggest one across commits wins.   │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Nested cap          │ A commit squashed in from upstream is always  │
    │                     │ minor, even if it says it is breaking.        │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ NONE                │ Nothing releasable. The version comes back    │
    │                     │ unchanged and the caller skips the library.   │
    └─────────────────────┴────────────────────────────────────────────────┘

Rules::

    nested commit     → MINOR (never MAJOR)
    breaking          → MAJOR
    feat              → MINOR
    fix               → PATCH
    anything else     → NONE

Usage::

    from clientkit.versioning import derive_next_version

    derive_next_version(commits, '1.2.3')  # '1.3.0'
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

import semver

from clientkit.commits import ConventionalCommit
from clientkit.errors import VersionDerivationError
from clientkit.logging import get_logger

logger = get_logger(__name__)


class ChangeLevel(Enum):
    """Semver change levels, ordered by precedence (highest first)."""

    MAJOR = 'major'
    MINOR = 'minor'
    PATCH = 'patch'
    NONE = 'none'


# Lower index = higher precedence.
CHANGE_PRECEDENCE: list[ChangeLevel] = [
    ChangeLevel.MAJOR,
    ChangeLevel.MINOR,
    ChangeLevel.PATCH,
    ChangeLevel.NONE,
]


def max_change(a: ChangeLevel, b: ChangeLevel) -> ChangeLevel:
    """Return the higher-precedence change level.

    >>> max_change(ChangeLevel.MINOR, ChangeLevel.PATCH)
    <ChangeLevel.MINOR: 'minor'>
    """
    return CHANGE_PRECEDENCE[min(CHANGE_PRECEDENCE.index(a), CHANGE_PRECEDENCE.index(b))]


def classify_change_level(commit: ConventionalCommit) -> ChangeLevel:
    """Classify a single commit."""
    if commit.is_nested:
        return ChangeLevel.MINOR
    if commit.is_breaking:
        return ChangeLevel.MAJOR
    if commit.type == 'feat':
        return ChangeLevel.MINOR
    if commit.type == 'fix':
        return ChangeLevel.PATCH
    return ChangeLevel.NONE


def highest_change(commits: Iterable[ConventionalCommit]) -> ChangeLevel:
    """Return the strongest change level across ``commits``."""
    level = ChangeLevel.NONE
    for commit in commits:
        level = max_change(level, classify_change_level(commit))
    return level


def parse_version(version: str) -> semver.Version:
    """Parse a semantic version string.

    Raises:
        VersionDerivationError: If ``version`` is not a valid semver.
    """
    try:
        return semver.Version.parse(version)
    except (ValueError, TypeError) as exc:
        raise VersionDerivationError(
            f'{version!r} is not a valid semantic version',
            hint='Fix the version in .librarian/state.yaml; it must look like 1.2.3.',
        ) from exc


def bump_version(version: str, level: ChangeLevel) -> str:
    """Step ``version`` by ``level``, resetting lower components."""
    current = parse_version(version)
    if level is ChangeLevel.MAJOR:
        return str(current.bump_major())
    if level is ChangeLevel.MINOR:
        return str(current.bump_minor())
    if level is ChangeLevel.PATCH:
        return str(current.bump_patch())
    return version


def derive_next_version(commits: Iterable[ConventionalCommit], current_version: str) -> str:
    """Derive the next version for a library from its attributed commits.

    Args:
        commits: Commits already filtered to this library.
        current_version: The library's current version.

    Returns:
        The next version, or ``current_version`` unchanged when no commit
        is releasable.

    Raises:
        VersionDerivationError: If ``current_version`` is not valid.
    """
    level = highest_change(commits)
    next_version = bump_version(current_version, level)
    logger.debug('version_derived', current=current_version, level=level.value, next=next_version)
    return next_version


def max_version(*versions: str) -> str:
    """Return the highest of ``versions``, ignoring empty strings.

    Raises:
        VersionDerivationError: If any non-empty entry is invalid.
    """
    candidates = [v for v in versions if v]
    if not candidates:
        return ''
    return str(max(parse_version(v) for v in candidates))


__all__ = [
    'CHANGE_PRECEDENCE',
    'ChangeLevel',
    'bump_version',
    'classify_change_level',
    'derive_next_version',
    'highest_change',
    'max_change',
    'max_version',
    'parse_version',
]
