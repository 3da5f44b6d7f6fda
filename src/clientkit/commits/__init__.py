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

"""Commit message parsing.

Usage::

    from clientkit.commits import RawCommit, parse_commits

    commits = parse_commits(RawCommit(sha='abc123', message='feat: add field'), 'pubsub')
    assert commits[0].type == 'feat'
    assert commits[0].library_id == 'pubsub'
"""

from clientkit.commits._parser import (
    BEGIN_COMMIT,
    BEGIN_NESTED_COMMIT,
    END_COMMIT,
    END_NESTED_COMMIT,
    CommitMessageParser,
)
from clientkit.commits._types import (
    BREAKING_CHANGE_FOOTER,
    LIBRARY_IDS_FOOTER,
    PIPER_FOOTER,
    SOURCE_LINK_FOOTER,
    ConventionalCommit,
    RawCommit,
)

# Module-level singleton for convenience.
_DEFAULT_PARSER = CommitMessageParser()


def parse_commits(commit: RawCommit, library_id: str = '') -> list[ConventionalCommit]:
    """Parse a raw commit with the default :class:`CommitMessageParser`."""
    return _DEFAULT_PARSER.parse(commit, library_id)


__all__ = [
    'BEGIN_COMMIT',
    'BEGIN_NESTED_COMMIT',
    'BREAKING_CHANGE_FOOTER',
    'CommitMessageParser',
    'ConventionalCommit',
    'END_COMMIT',
    'END_NESTED_COMMIT',
    'LIBRARY_IDS_FOOTER',
    'PIPER_FOOTER',
    'RawCommit',
    'SOURCE_LINK_FOOTER',
    'parse_commits',
]
