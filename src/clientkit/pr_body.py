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

"""Reading a merged release pull request body back into releases.

The body is the output of
:func:`~clientkit.release_notes.format_release_notes`. It is read line
by line with a small state machine that mirrors that grammar::

    OUTSIDE ──<details><summary>id: 1.2.0</summary>──▶ TITLE
    TITLE   ──### Features──▶ SECTION ──### Bug Fixes──▶ SECTION
    OUTSIDE ──<details><summary>Bulk Changes</summary>──▶ BULK
    TITLE | SECTION | BULK ──</details>──▶ OUTSIDE

Inside a SECTION, entries are separated by blank lines. Inside BULK,
each ``* type: subject`` line is followed by a ``Libraries: a,b`` line,
and the entry is added to every library it names. Bulk entries of types
without a release-notes heading are dropped.

Usage::

    from clientkit.pr_body import parse_release_body

    for release in parse_release_body(pr['body']):
        print(release.library_id, release.version)
        print(release.body())
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from clientkit.errors import E, ClientKitError
from clientkit.logging import get_logger
from clientkit.release_notes import COMMIT_TYPE_HEADINGS, RENDERED_TYPES

logger = get_logger(__name__)

BULK_SUMMARY = 'Bulk Changes'

_DETAILS_OPEN = re.compile(r'^<details><summary>(?P<summary>.*?)</summary>(?P<rest>.*)$')
_DETAILS_CLOSE = '</details>'
_SUMMARY = re.compile(r'^(?P<library>.*?): (?P<version>v?\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?)')
_HEADING = re.compile(r'^### (?P<heading>.+?)\s*$')
_BULK_ENTRY = re.compile(r'^\* (?P<type>[a-z]+): (?P<subject>.*)$')
_BULK_LIBRARIES = re.compile(r'^\s*Libraries: (?P<ids>.*)$')

RELEASE_HEADINGS: tuple[str, ...] = tuple(COMMIT_TYPE_HEADINGS[t] for t in RENDERED_TYPES)


class _State(Enum):
    OUTSIDE = 'outside'
    TITLE = 'title'
    SECTION = 'section'
    BULK = 'bulk'


@dataclass
class LibraryRelease:
    """One library's release, as read from a release pull request.

    Attributes:
        library_id: The library being released.
        version: The version being released.
        title: The ``## [version](compare link) (date)`` line.
        messages: Release-note entries keyed by section heading.
    """

    library_id: str
    version: str = ''
    title: str = ''
    messages: dict[str, list[str]] = field(default_factory=dict)

    def add(self, heading: str, message: str) -> None:
        """Append an entry under ``heading``."""
        self.messages.setdefault(heading, []).append(message)

    def body(self) -> str:
        """Render the release notes for the GitHub release."""
        parts = [self.title.strip()] if self.title.strip() else []
        for heading in RELEASE_HEADINGS:
            entries = self.messages.get(heading)
            if entries:
                parts.append(f'### {heading}\n\n' + '\n\n'.join(entries))
        return '\n\n'.join(parts)


class ReleaseBodyParser:
    """Line-oriented parser for release pull request bodies."""

    def __init__(self) -> None:
        """Start in the OUTSIDE state."""
        self._releases: dict[str, LibraryRelease] = {}
        self._bulk: list[tuple[str, str, list[str]]] = []
        self._state = _State.OUTSIDE
        self._current: LibraryRelease | None = None
        self._heading = ''
        self._buffer: list[str] = []
        self._pending_bulk: tuple[str, str] | None = None

    def parse(self, text: str) -> list[LibraryRelease]:
        """Parse ``text`` and return releases sorted by library ID.

        Raises:
            ClientKitError: If a ``<details>`` block is nested or never
                closed.
        """
        for lineno, line in enumerate(text.splitlines(), start=1):
            self._feed(line, lineno)
        if self._state is not _State.OUTSIDE:
            raise ClientKitError(
                E.PR_BODY_INVALID,
                'Release pull request body ends inside a <details> block.',
                hint='Each <details><summary>...</summary> needs a closing </details>.',
            )
        self._apply_bulk()
        return [self._releases[k] for k in sorted(self._releases) if self._releases[k].version]

    def _feed(self, line: str, lineno: int) -> None:
        opened = _DETAILS_OPEN.match(line.strip())
        if opened:
            if self._state is not _State.OUTSIDE:
                raise ClientKitError(
                    E.PR_BODY_INVALID,
                    f'Nested <details> block at line {lineno} of the release pull request body.',
                )
            self._open(opened.group('summary').strip())
            rest = opened.group('rest')
            if rest.strip():
                self._feed(rest, lineno)
            return

        stripped = line.strip()
        if stripped.endswith(_DETAILS_CLOSE) and self._state is not _State.OUTSIDE:
            before = stripped[: -len(_DETAILS_CLOSE)]
            if before.strip():
                self._feed(before, lineno)
            self._close()
            return

        if self._state is _State.OUTSIDE:
            return
        if self._state is _State.BULK:
            self._bulk_line(line)
            return

        heading = _HEADING.match(line)
        if heading and heading.group('heading') in RELEASE_HEADINGS:
            self._flush()
            self._state = _State.SECTION
            self._heading = heading.group('heading')
            return
        if self._state is _State.TITLE:
            if self._current is not None:
                self._current.title = f'{self._current.title}\n{line}' if self._current.title else line
            return
        if stripped:
            self._buffer.append(line)
        else:
            self._flush()

    def _open(self, summary: str) -> None:
        if summary == BULK_SUMMARY:
            self._state = _State.BULK
            return
        match = _SUMMARY.match(summary)
        if not match:
            logger.warning('release_summary_unparsed', summary=summary)
            self._state = _State.TITLE
            self._current = None
            return
        library_id = match.group('library').strip()
        version = match.group('version').strip()
        release = self._releases.setdefault(library_id, LibraryRelease(library_id=library_id))
        release.version = version
        self._current = release
        self._state = _State.TITLE
        logger.debug('release_section_parsed', library=library_id, version=version)

    def _close(self) -> None:
        self._flush()
        self._pending_bulk = None
        self._state = _State.OUTSIDE
        self._current = None
        self._heading = ''

    def _flush(self) -> None:
        if self._buffer and self._current is not None and self._heading:
            self._current.add(self._heading, '\n'.join(self._buffer).strip())
        self._buffer = []

    def _bulk_line(self, line: str) -> None:
        entry = _BULK_ENTRY.match(line.strip())
        if entry:
            self._pending_bulk = (entry.group('type'), entry.group('subject').strip())
            return
        libraries = _BULK_LIBRARIES.match(line)
        if libraries and self._pending_bulk is not None:
            commit_type, subject = self._pending_bulk
            ids = [lid.strip() for lid in libraries.group('ids').split(',') if lid.strip()]
            self._bulk.append((commit_type, subject, ids))
            self._pending_bulk = None

    def _apply_bulk(self) -> None:
        for commit_type, subject, ids in self._bulk:
            if commit_type not in RENDERED_TYPES:
                logger.debug('bulk_change_not_released', type=commit_type, subject=subject)
                continue
            heading = COMMIT_TYPE_HEADINGS[commit_type]
            for library_id in ids:
                release = self._releases.get(library_id)
                if release is None:
                    logger.warning('bulk_change_unknown_library', library=library_id, subject=subject)
                    continue
                release.add(heading, f'* {subject}')


def parse_release_body(text: str) -> list[LibraryRelease]:
    """Parse a release pull request body into per-library releases."""
    return ReleaseBodyParser().parse(text)


__all__ = [
    'BULK_SUMMARY',
    'LibraryRelease',
    'RELEASE_HEADINGS',
    'ReleaseBodyParser',
    'parse_release_body',
]
