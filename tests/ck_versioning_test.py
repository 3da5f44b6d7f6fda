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

"""Tests for change classification and version derivation."""

from __future__ import annotations

import pytest
from clientkit.commits import ConventionalCommit
from clientkit.errors import VersionDerivationError
from clientkit.versioning import (
    ChangeLevel,
    bump_version,
    classify_change_level,
    derive_next_version,
    highest_change,
    max_change,
    max_version,
)


def _c(type_: str = 'feat', *, breaking: bool = False, nested: bool = False) -> ConventionalCommit:
    return ConventionalCommit(type=type_, subject='s', is_breaking=breaking, is_nested=nested)


class TestClassifyChangeLevel:
    """Tests for classify_change_level."""

    def test_breaking_is_major(self) -> None:
        """Breaking non-nested commits are major."""
        assert classify_change_level(_c('fix', breaking=True)) is ChangeLevel.MAJOR

    def test_feat_is_minor(self) -> None:
        """Features are minor."""
        assert classify_change_level(_c('feat')) is ChangeLevel.MINOR

    def test_fix_is_patch(self) -> None:
        """Fixes are patch."""
        assert classify_change_level(_c('fix')) is ChangeLevel.PATCH

    @pytest.mark.parametrize('type_', ['chore', 'docs', 'refactor', 'test', 'ci', 'build', 'style'])
    def test_other_types_are_none(self, type_: str) -> None:
        """Other types are not releasable on their own."""
        assert classify_change_level(_c(type_)) is ChangeLevel.NONE

    def test_nested_is_capped_at_minor(self) -> None:
        """A nested breaking commit is still only minor."""
        assert classify_change_level(_c('feat', breaking=True, nested=True)) is ChangeLevel.MINOR

    def test_nested_fix_is_minor(self) -> None:
        """Nested commits are always minor, even fixes."""
        assert classify_change_level(_c('fix', nested=True)) is ChangeLevel.MINOR

    def test_monotonic_in_breaking(self) -> None:
        """Adding breaking-ness never lowers a non-nested level."""
        order = [ChangeLevel.NONE, ChangeLevel.PATCH, ChangeLevel.MINOR, ChangeLevel.MAJOR]
        for type_ in ('feat', 'fix', 'chore'):
            plain = order.index(classify_change_level(_c(type_)))
            broken = order.index(classify_change_level(_c(type_, breaking=True)))
            assert broken >= plain


class TestHighestChange:
    """Tests for max_change and highest_change."""

    def test_max_change(self) -> None:
        """Higher precedence wins regardless of order."""
        assert max_change(ChangeLevel.PATCH, ChangeLevel.MINOR) is ChangeLevel.MINOR
        assert max_change(ChangeLevel.MAJOR, ChangeLevel.NONE) is ChangeLevel.MAJOR

    def test_empty(self) -> None:
        """No commits means no change."""
        assert highest_change([]) is ChangeLevel.NONE


class TestDeriveNextVersion:
    """Tests for derive_next_version."""

    def test_nested_breaking_feat(self) -> None:
        """A nested breaking feature on 1.2.3 derives 1.3.0."""
        assert derive_next_version([_c('feat', breaking=True, nested=True)], '1.2.3') == '1.3.0'

    def test_non_nested_breaking_dominates(self) -> None:
        """A direct breaking commit still wins over a nested fix."""
        commits = [_c('feat', breaking=True), _c('fix', nested=True)]
        assert derive_next_version(commits, '1.2.3') == '2.0.0'

    def test_patch(self) -> None:
        """Fixes bump the patch component."""
        assert derive_next_version([_c('fix'), _c('chore')], '1.2.3') == '1.2.4'

    def test_minor_resets_patch(self) -> None:
        """A minor bump resets patch."""
        assert derive_next_version([_c('fix'), _c('feat')], '1.2.3') == '1.3.0'

    def test_nothing_releasable(self) -> None:
        """Only unreleasable commits keep the version."""
        assert derive_next_version([_c('chore'), _c('docs')], '1.2.3') == '1.2.3'

    def test_invalid_current_version(self) -> None:
        """A broken current version is an error, never a guess."""
        with pytest.raises(VersionDerivationError):
            derive_next_version([_c('feat')], 'not-a-version')


class TestVersionHelpers:
    """Tests for bump_version and max_version."""

    def test_bump_none_keeps_version(self) -> None:
        """ChangeLevel.NONE returns the input unchanged."""
        assert bump_version('0.1.0', ChangeLevel.NONE) == '0.1.0'

    def test_max_version(self) -> None:
        """The highest semantic version wins, not the highest string."""
        assert max_version('1.9.0', '1.10.0') == '1.10.0'

    def test_max_version_ignores_empty(self) -> None:
        """Empty entries are skipped."""
        assert max_version('', '2.0.0') == '2.0.0'
        assert max_version() == ''

    def test_max_version_invalid(self) -> None:
        """Invalid versions raise."""
        with pytest.raises(VersionDerivationError):
            max_version('1.0.0', 'v-next')
