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

"""Pure types for commit message parsing.

Everything here is a frozen dataclass: no I/O, no logging, no side
effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# Footer keys with special meaning.
LIBRARY_IDS_FOOTER = 'Library-IDs'
PIPER_FOOTER = 'PiperOrigin-RevId'
SOURCE_LINK_FOOTER = 'Source-Link'
BREAKING_CHANGE_FOOTER = 'BREAKING CHANGE'


@dataclass(frozen=True)
class RawCommit:
    """A commit as reported by the VCS, before parsing.

    Attributes:
        sha: The full commit SHA.
        message: The full commit message.
        when: Commit timestamp, if known.
    """

    sha: str
    message: str
    when: datetime | None = None


@dataclass(frozen=True)
class ConventionalCommit:
    """One conventional commit extracted from a raw commit message.

    A single :class:`RawCommit` may yield several of these when its
    message wraps nested commits from a squashed upstream history.

    Attributes:
        type: The commit type (e.g. ``"feat"``, ``"fix"``).
        subject: The description after ``type(scope): ``.
        body: Body text between the header and the footers.
        footers: ``Key: value`` trailers. Keys are unique; the first
            occurrence of a key wins.
        library_id: Direct attribution used when no ``Library-IDs``
            footer is present.
        scope: The optional scope in parentheses.
        is_breaking: ``!`` marker or ``BREAKING CHANGE`` footer present.
        is_nested: Extracted from a ``BEGIN_NESTED_COMMIT`` block.
        commit_hash: SHA of the enclosing raw commit.
        when: Timestamp of the enclosing raw commit.
    """

    type: str
    subject: str
    body: str = ''
    footers: dict[str, str] = field(default_factory=dict)
    library_id: str = ''
    scope: str = ''
    is_breaking: bool = False
    is_nested: bool = False
    commit_hash: str = ''
    when: datetime | None = None

    @property
    def piper_cl_number(self) -> str:
        """The upstream ``PiperOrigin-RevId`` reference, or empty string."""
        return self.footers.get(PIPER_FOOTER, '')
