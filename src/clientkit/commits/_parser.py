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

"""Conventional commit parser with nested-commit support.

Commits landed by the generation pipeline squash many upstream commits
into one message using a sentinel grammar::

    BEGIN_COMMIT
    BEGIN_NESTED_COMMIT
    feat: add a new field

    PiperOrigin-RevId: 123456
    Library-IDs: secretmanager
    END_NESTED_COMMIT
    BEGIN_NESTED_COMMIT
    fix: correct a doc string
    ...
    END_NESTED_COMMIT
    END_COMMIT

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Commit block        │ BEGIN_COMMIT..END_COMMIT narrows the message  │
    │                     │ to the part meant for machines.               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Override block      │ BEGIN_COMMIT_OVERRIDE..END_COMMIT_OVERRIDE    │
    │                     │ wins over a plain commit block.               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Part                │ Text before the first nested block, plus each │
    │                     │ closed nested block, parsed independently.    │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Footers             │ Key: value lines after a blank line. They are │
    │                     │ shared by every header in the same part.      │
    └─────────────────────┴────────────────────────────────────────────────┘

A malformed part is logged and skipped; only an empty message raises
:class:`~clientkit.errors.CommitParseError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from clientkit.commits._types import (
    BREAKING_CHANGE_FOOTER,
    LIBRARY_IDS_FOOTER,
    SOURCE_LINK_FOOTER,
    ConventionalCommit,
    RawCommit,
)
from clientkit.errors import CommitParseError
from clientkit.logging import get_logger

log = get_logger('clientkit.commits')

BEGIN_COMMIT = 'BEGIN_COMMIT'
END_COMMIT = 'END_COMMIT'
BEGIN_COMMIT_OVERRIDE = 'BEGIN_COMMIT_OVERRIDE'
END_COMMIT_OVERRIDE = 'END_COMMIT_OVERRIDE'
BEGIN_NESTED_COMMIT = 'BEGIN_NESTED_COMMIT'
END_NESTED_COMMIT = 'END_NESTED_COMMIT'


@dataclass
class _Header:
    """A header line plus the subject and body lines that follow it."""

    type: str
    scope: str
    description: str
    breaking: bool
    library_id: str
    subject_lines: list[str] = field(default_factory=list)
    body_lines: list[str] = field(default_factory=list)
    separated: bool = False

    def add_line(self, line: str) -> None:
        # Lines before the first blank line continue the subject.
        if not line:
            self.separated = True
        elif self.separated:
            self.body_lines.append(line)
        else:
            self.subject_lines.append(line)


class CommitMessageParser:
    """Parses raw commit messages into :class:`ConventionalCommit` records.

    The compiled patterns are built once per instance and never mutated,
    so a single parser can be shared across a whole run.
    """

    def __init__(self) -> None:
        """Compile the header, footer, source-link and library-ID patterns."""
        self._header = re.compile(r'^(?P<type>\w+)(?:\((?P<scope>.*)\))?(?P<breaking>!)?:\s(?P<description>.*)')
        self._footer = re.compile(rf'^([A-Za-z-]+|{BREAKING_CHANGE_FOOTER}):(.*)')
        self._source_link = re.compile(
            r'^\[googleapis/googleapis@(?P<short_sha>.*)]\(https://github\.com/googleapis/googleapis/commit/(?P<sha>.*)\)$'
        )
        self._library_id = re.compile(r'\[([^]]+)]')

    def parse(self, commit: RawCommit, library_id: str = '') -> list[ConventionalCommit]:
        """Parse one raw commit into zero or more conventional commits.

        Args:
            commit: The raw commit to parse.
            library_id: Library the caller is evaluating. Used as the
                direct attribution when the header carries no ``[id]``.

        Returns:
            Commits in source order, deduplicated by subject and attributed
            libraries (the ``Library-IDs`` footer, else the library ID).

        Raises:
            CommitParseError: If the message is empty or whitespace only.
        """
        if not commit.message.strip():
            raise CommitParseError(f'commit {commit.sha[:8] or "?"} has an empty message')

        message = _extract_commit_block(commit.message)
        seen: set[tuple[str, str]] = set()
        results: list[ConventionalCommit] = []
        for text, nested in _split_parts(message):
            for parsed in self._parse_part(text, nested, commit, library_id):
                key = (parsed.subject, parsed.footers.get(LIBRARY_IDS_FOOTER, parsed.library_id))
                if key in seen:
                    continue
                seen.add(key)
                results.append(parsed)
        return results

    def _parse_part(
        self,
        text: str,
        nested: bool,
        commit: RawCommit,
        library_id: str,
    ) -> list[ConventionalCommit]:
        lines = text.strip().split('\n')
        body_lines, footer_lines = self._separate_footers(lines)
        footers, footer_breaking = self._parse_footers(footer_lines)

        headers: list[_Header] = []
        for line in body_lines:
            match = self._header.match(line)
            if match is None:
                if not headers:
                    log.warning('line_outside_commit', line=line, sha=commit.sha[:8])
                    continue
                headers[-1].add_line(line.strip())
                continue

            description = match.group('description')
            id_match = self._library_id.search(description)
            if id_match:
                library_id = id_match.group(1)
            headers.append(
                _Header(
                    type=match.group('type'),
                    scope=match.group('scope') or '',
                    description=description,
                    breaking=match.group('breaking') == '!',
                    library_id=library_id,
                )
            )

        if not headers:
            log.warning('commit_part_unparsed', sha=commit.sha[:8], part=text[:80])

        return [
            ConventionalCommit(
                type=h.type,
                subject=' '.join([h.description, *h.subject_lines]).strip(),
                body='\n'.join(h.body_lines),
                footers=dict(footers),
                library_id=h.library_id,
                scope=h.scope,
                is_breaking=h.breaking or footer_breaking,
                is_nested=nested,
                commit_hash=commit.sha,
                when=commit.when,
            )
            for h in headers
        ]

    def _separate_footers(self, lines: list[str]) -> tuple[list[str], list[str]]:
        """Split at the first blank line that is followed by a footer line."""
        for i, line in enumerate(lines):
            if line.strip():
                continue
            following = next((nxt for nxt in lines[i + 1 :] if nxt.strip()), None)
            if following is not None and self._footer.match(following):
                return lines[:i], lines[i + 1 :]
        return lines, []

    def _parse_footers(self, lines: list[str]) -> tuple[dict[str, str], bool]:
        footers: dict[str, str] = {}
        breaking = False
        last_key = ''
        for line in lines:
            match = self._footer.match(line)
            if match is None:
                if last_key and line.strip():
                    footers[last_key] += '\n' + line
                continue
            key = match.group(1).strip()
            if key in footers:
                # Continuation lines of a repeated key are dropped too.
                last_key = ''
                continue
            footers[key] = match.group(2).strip()
            last_key = key
            if key == BREAKING_CHANGE_FOOTER:
                breaking = True

        footers = {key: value.strip() for key, value in footers.items()}
        link = footers.get(SOURCE_LINK_FOOTER)
        if link is not None:
            link_match = self._source_link.match(link)
            if link_match:
                footers[SOURCE_LINK_FOOTER] = link_match.group('sha')
        return footers, breaking


def _extract_commit_block(message: str) -> str:
    """Narrow a message to its override or commit block, if it has one."""
    for begin, end in ((BEGIN_COMMIT_OVERRIDE, END_COMMIT_OVERRIDE), (BEGIN_COMMIT, END_COMMIT)):
        start = message.find(begin)
        if start == -1:
            continue
        after = message[start + len(begin) :]
        stop = after.find(end)
        if stop == -1:
            return message
        return after[:stop].strip()
    return message


def _split_parts(message: str) -> list[tuple[str, bool]]:
    """Return ``(text, is_nested)`` pairs in source order.

    A nested block without its ``END_NESTED_COMMIT`` is ignored.
    """
    pieces = message.split(BEGIN_NESTED_COMMIT)
    parts: list[tuple[str, bool]] = []
    if pieces[0].strip():
        parts.append((pieces[0].strip(), False))
    for piece in pieces[1:]:
        stop = piece.find(END_NESTED_COMMIT)
        if stop == -1:
            continue
        text = piece[:stop].strip()
        if text:
            parts.append((text, True))
    return parts
