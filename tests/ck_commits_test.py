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

"""Tests for the commit message parser.

All tests are pure: no I/O, no mocks, no async.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from clientkit.commits import (
    LIBRARY_IDS_FOOTER,
    PIPER_FOOTER,
    SOURCE_LINK_FOOTER,
    CommitMessageParser,
    RawCommit,
    parse_commits,
)
from clientkit.errors import CommitParseError

_WHEN = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

_NESTED = """\
feat: update APIs

BEGIN_COMMIT
BEGIN_NESTED_COMMIT
feat: add a field

PiperOrigin-RevId: 111
Library-IDs: secretmanager
END_NESTED_COMMIT
BEGIN_NESTED_COMMIT
fix!: correct a doc string

PiperOrigin-RevId: 222
Library-IDs: pubsub, storage
END_NESTED_COMMIT
END_COMMIT
"""


def _raw(message: str, sha: str = 'abcdef0123456789') -> RawCommit:
    return RawCommit(sha=sha, message=message, when=_WHEN)


# ---------------------------------------------------------------------------
# Standard conventional commits
# ---------------------------------------------------------------------------


class TestStandardCommit:
    """Tests for messages without nested blocks."""

    def test_type_scope_subject(self) -> None:
        """Header fields are split out."""
        commits = parse_commits(_raw('feat(pubsub): add ordering keys'), 'pubsub')
        assert len(commits) == 1
        c = commits[0]
        assert c.type == 'feat'
        assert c.scope == 'pubsub'
        assert c.subject == 'add ordering keys'
        assert c.library_id == 'pubsub'
        assert not c.is_breaking
        assert not c.is_nested

    def test_commit_metadata_is_copied(self) -> None:
        """Hash and timestamp come from the raw commit."""
        c = parse_commits(_raw('fix: typo', sha='1234'), 'lib')[0]
        assert c.commit_hash == '1234'
        assert c.when == _WHEN

    def test_bang_marks_breaking(self) -> None:
        """A ``!`` after the type is breaking."""
        assert parse_commits(_raw('feat!: drop v1'), 'lib')[0].is_breaking

    def test_breaking_change_footer(self) -> None:
        """A ``BREAKING CHANGE`` footer is breaking."""
        message = 'feat: new surface\n\nsome body\n\nBREAKING CHANGE: removed old surface'
        c = parse_commits(_raw(message), 'lib')[0]
        assert c.is_breaking
        assert c.body == 'some body'
        assert c.footers['BREAKING CHANGE'] == 'removed old surface'

    def test_body_and_footers(self) -> None:
        """Body lines and footers are separated at the footer block."""
        message = 'fix: handle nil\n\nFirst line.\nSecond line.\n\nPiperOrigin-RevId: 98765\nSource-Link: foo'
        c = parse_commits(_raw(message), 'lib')[0]
        assert c.body == 'First line.\nSecond line.'
        assert c.footers[PIPER_FOOTER] == '98765'
        assert c.piper_cl_number == '98765'
        assert c.footers[SOURCE_LINK_FOOTER] == 'foo'

    def test_first_footer_occurrence_wins(self) -> None:
        """Repeated footer keys keep the first value."""
        message = 'fix: a\n\nLibrary-IDs: one\nLibrary-IDs: two'
        assert parse_commits(_raw(message), 'lib')[0].footers[LIBRARY_IDS_FOOTER] == 'one'

    def test_source_link_is_normalized_to_sha(self) -> None:
        """A googleapis markdown link is reduced to the full SHA."""
        message = (
            'feat: a\n\nSource-Link: [googleapis/googleapis@abcd1234]'
            '(https://github.com/googleapis/googleapis/commit/abcd1234ef567890)'
        )
        assert parse_commits(_raw(message), 'lib')[0].footers[SOURCE_LINK_FOOTER] == 'abcd1234ef567890'

    def test_library_id_in_brackets(self) -> None:
        """``[id]`` in the description overrides the caller's library."""
        c = parse_commits(_raw('chore: [storage] bump deps'), 'pubsub')[0]
        assert c.library_id == 'storage'

    def test_multiple_headers_share_footers(self) -> None:
        """Each header in one part yields a commit with the same footers."""
        message = 'feat: one\nfix: two\n\nPiperOrigin-RevId: 9'
        commits = parse_commits(_raw(message), 'lib')
        assert [c.type for c in commits] == ['feat', 'fix']
        assert all(c.piper_cl_number == '9' for c in commits)

    def test_multi_line_subject(self) -> None:
        """Lines right after the header continue the subject."""
        c = parse_commits(_raw('feat: a long\nsubject line'), 'lib')[0]
        assert c.subject == 'a long subject line'

    def test_malformed_text_yields_nothing(self) -> None:
        """Text without a conventional header is not an error."""
        assert parse_commits(_raw('Merge branch main into feature'), 'lib') == []

    def test_empty_message_raises(self) -> None:
        """An empty message is a CommitParseError."""
        with pytest.raises(CommitParseError):
            parse_commits(_raw('   \n'), 'lib')

    def test_override_block_wins(self) -> None:
        """BEGIN_COMMIT_OVERRIDE replaces the original message."""
        message = 'feat: original\n\nBEGIN_COMMIT_OVERRIDE\nfix: corrected\nEND_COMMIT_OVERRIDE\n'
        commits = parse_commits(_raw(message), 'lib')
        assert [(c.type, c.subject) for c in commits] == [('fix', 'corrected')]


# ---------------------------------------------------------------------------
# Nested commits
# ---------------------------------------------------------------------------


class TestNestedCommits:
    """Tests for BEGIN_NESTED_COMMIT blocks."""

    def test_one_commit_per_block(self) -> None:
        """Each nested block yields exactly one nested commit."""
        commits = parse_commits(_raw(_NESTED), 'lib')
        assert len(commits) == 2
        assert all(c.is_nested for c in commits)

    def test_footers_stay_with_their_block(self) -> None:
        """Footers inside a block belong only to that block's commit."""
        first, second = parse_commits(_raw(_NESTED), 'lib')
        assert first.footers == {PIPER_FOOTER: '111', LIBRARY_IDS_FOOTER: 'secretmanager'}
        assert second.footers == {PIPER_FOOTER: '222', LIBRARY_IDS_FOOTER: 'pubsub, storage'}

    def test_source_order(self) -> None:
        """Nested commits come back in source order."""
        commits = parse_commits(_raw(_NESTED), 'lib')
        assert [c.subject for c in commits] == ['add a field', 'correct a doc string']

    def test_nested_breaking_flag_is_kept(self) -> None:
        """The parser reports breaking-ness; versioning caps it later."""
        assert parse_commits(_raw(_NESTED), 'lib')[1].is_breaking

    def test_unterminated_block_is_ignored(self) -> None:
        """A nested block without END_NESTED_COMMIT yields nothing."""
        message = 'BEGIN_COMMIT\nBEGIN_NESTED_COMMIT\nfeat: lost\nEND_COMMIT'
        assert parse_commits(_raw(message), 'lib') == []

    def test_duplicates_are_dropped(self) -> None:
        """Identical subject and library in two blocks appear once."""
        block = 'BEGIN_NESTED_COMMIT\nfeat: same\nEND_NESTED_COMMIT\n'
        commits = parse_commits(_raw(f'BEGIN_COMMIT\n{block}{block}END_COMMIT'), 'lib')
        assert len(commits) == 1

    def test_same_subject_for_different_libraries(self) -> None:
        """Blocks sharing a subject but naming different libraries both survive."""
        message = (
            'BEGIN_COMMIT\n'
            'BEGIN_NESTED_COMMIT\nfeat: update the API\n\nLibrary-IDs: a\nEND_NESTED_COMMIT\n'
            'BEGIN_NESTED_COMMIT\nfeat: update the API\n\nLibrary-IDs: b\nEND_NESTED_COMMIT\n'
            'END_COMMIT'
        )
        commits = parse_commits(_raw(message), 'b')
        assert len(commits) == 2
        assert [c.footers[LIBRARY_IDS_FOOTER] for c in commits] == ['a', 'b']
        assert all(c.is_nested for c in commits)


class TestParserReuse:
    """A parser instance is stateless between messages."""

    def test_shared_parser(self) -> None:
        """Parsing one message does not leak into the next."""
        parser = CommitMessageParser()
        first = parser.parse(_raw('feat: [a] one'), 'x')
        second = parser.parse(_raw('fix: two'), 'y')
        assert first[0].library_id == 'a'
        assert second[0].library_id == 'y'
