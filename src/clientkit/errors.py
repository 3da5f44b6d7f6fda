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

"""Structured error system for clientkit.

Every error has a unique ``CK-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorCode           │ A unique named ID like "CK-STATE-NOT-FOUND"   │
    │                     │ for each error. Readable at a glance.         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ClientKitError      │ An exception you can raise. Carries the       │
    │                     │ error card so renderers can display it.       │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Library-scoped      │ Errors like ContainerInvocationError stop one │
    │ errors              │ library. The batch keeps going without it.    │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Run-scoped errors   │ TotalBatchFailure and ExternalServiceError    │
    │                     │ stop the whole run with a non-zero exit.      │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ explain()           │ Looks up an error code and prints details.    │
    │                     │ Like typing a code into a help desk kiosk.    │
    └─────────────────────┴────────────────────────────────────────────────┘

Code categories::

    CK-CONFIG-*       Configuration file errors
    CK-STATE-*        State file errors
    CK-COMMIT-*       Commit message parsing
    CK-ATTRIBUTION-*  Changed-file lookups for attribution
    CK-VERSION-*      Version derivation and overrides
    CK-CONTENT-*      Content-hash lookups for the generation decision
    CK-CONTAINER-*    Container configure/generate/build/release-stage
    CK-BATCH-*        Batch outcomes
    CK-EXTERNAL-*     Push, pull request, tag and release calls
    CK-LOCK-*         Run lock
    CK-PR-*           Release pull request bodies

Usage::

    from clientkit.errors import ClientKitError, E

    raise ClientKitError(
        code=E.STATE_NOT_FOUND,
        message='No .librarian/state.yaml found in the repository.',
        hint='Run clientkit from the root of a language repository.',
    )
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all clientkit diagnostic codes.

    Each code maps to a unique ``CK-NAMED-KEY`` identifier. Use these
    constants instead of raw strings when raising :class:`ClientKitError`.
    """

    # Configuration
    CONFIG_INVALID_KEY = 'CK-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'CK-CONFIG-INVALID-VALUE'
    CONFIG_PARSE_ERROR = 'CK-CONFIG-PARSE-ERROR'

    # State
    STATE_NOT_FOUND = 'CK-STATE-NOT-FOUND'
    STATE_CORRUPTED = 'CK-STATE-CORRUPTED'
    STATE_DUPLICATE_LIBRARY = 'CK-STATE-DUPLICATE-LIBRARY'
    LIBRARY_NOT_FOUND = 'CK-LIBRARY-NOT-FOUND'

    # Commits and attribution
    COMMIT_EMPTY = 'CK-COMMIT-EMPTY'
    ATTRIBUTION_FAILED = 'CK-ATTRIBUTION-FAILED'

    # Versioning
    VERSION_INVALID = 'CK-VERSION-INVALID'
    VERSION_NOT_BUMPED = 'CK-VERSION-NOT-BUMPED'
    VERSION_OVERRIDE_INVALID = 'CK-VERSION-OVERRIDE-INVALID'

    # Generation
    CONTENT_HASH_LOOKUP = 'CK-CONTENT-HASH-LOOKUP'
    CONTAINER_FAILED = 'CK-CONTAINER-FAILED'

    # Batch
    BATCH_TOTAL_FAILURE = 'CK-BATCH-TOTAL-FAILURE'

    # Code hosting / VCS side effects
    EXTERNAL_SERVICE = 'CK-EXTERNAL-SERVICE'

    # Locking
    LOCK_ACQUISITION_FAILED = 'CK-LOCK-ACQUISITION-FAILED'

    # Release pull requests
    PR_BODY_INVALID = 'CK-PR-BODY-INVALID'

    # Onboarding
    PIPER_ID_NOT_FOUND = 'CK-PIPER-ID-NOT-FOUND'
    API_PATH_NOT_FOUND = 'CK-API-PATH-NOT-FOUND'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``CK-NAMED-KEY`` error code.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class ClientKitError(Exception):
    """Base exception for all clientkit errors.

    Carries structured diagnostic information (code, message, hint) that
    can be rendered as a rich terminal message or structured JSON.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


class _CodedError(ClientKitError):
    """A :class:`ClientKitError` whose code is fixed by the subclass."""

    default_code: ErrorCode

    def __init__(self, message: str, hint: str = '') -> None:
        """Initialize with the subclass's fixed code."""
        super().__init__(self.default_code, message, hint)


class CommitParseError(_CodedError):
    """The commit message is empty or whitespace only."""

    default_code = E.COMMIT_EMPTY


class AttributionError(_CodedError):
    """Listing the files changed by a commit failed."""

    default_code = E.ATTRIBUTION_FAILED


class VersionDerivationError(_CodedError):
    """A library's current version is not a valid semantic version."""

    default_code = E.VERSION_INVALID


class ContentHashLookupError(_CodedError):
    """The VCS could not report a content hash for an API path."""

    default_code = E.CONTENT_HASH_LOOKUP


class ContainerInvocationError(_CodedError):
    """A container command exited non-zero or reported an error message."""

    default_code = E.CONTAINER_FAILED


class TotalBatchFailure(_CodedError):
    """Every library in the batch either failed or was skipped."""

    default_code = E.BATCH_TOTAL_FAILURE


class ExternalServiceError(_CodedError):
    """A git or GitHub side effect failed, such as a checkout, push or pull request."""

    default_code = E.EXTERNAL_SERVICE


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.STATE_NOT_FOUND: ErrorInfo(
        code=E.STATE_NOT_FOUND,
        message='No .librarian/state.yaml found in the repository.',
        hint='Run clientkit from the root of a language repository, or pass --repo.',
    ),
    E.CONTAINER_FAILED: ErrorInfo(
        code=E.CONTAINER_FAILED,
        message='The language container failed or wrote an error_message into its response file.',
        hint='Re-run with --verbose to see the container command and its stderr.',
    ),
    E.BATCH_TOTAL_FAILURE: ErrorInfo(
        code=E.BATCH_TOTAL_FAILURE,
        message='Every library in the batch failed or was skipped; nothing was committed.',
        hint='Check the per-library failure logs above. Blocked libraries count as skipped.',
    ),
    E.VERSION_NOT_BUMPED: ErrorInfo(
        code=E.VERSION_NOT_BUMPED,
        message='The requested library has no releasable changes since its last release.',
        hint='Pass --library-version to force a version, or land a feat/fix commit first.',
    ),
    E.LOCK_ACQUISITION_FAILED: ErrorInfo(
        code=E.LOCK_ACQUISITION_FAILED,
        message='Another clientkit run holds the lock on this checkout.',
        hint='Wait for the other run to finish, or delete the stale .librarian/clientkit.lock file.',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"CK-STATE-NOT-FOUND"``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def _render(info: ErrorInfo, out: TextIO) -> None:
    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(info.message)
        console.print(f'[bold red]error[/bold red][bold red]\\[{info.code.value}][/bold red][bold]: {msg}[/bold]')
        if info.hint:
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {rich_escape(info.hint)}')
        console.print()
    else:
        print(f'error[{info.code.value}]: {info.message}', file=out)  # noqa: T201 - CLI output
        if info.hint:
            print('  |', file=out)  # noqa: T201 - CLI output
            print(f'  = hint: {info.hint}', file=out)  # noqa: T201 - CLI output
        print(file=out)  # noqa: T201 - CLI output


def render_error(exc: ClientKitError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style with color.

    Output format::

        error[CK-BATCH-TOTAL-FAILURE]: all 2 libraries failed or were skipped
          |
          = hint: Check the per-library failure logs above.

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    _render(exc.info, file or sys.stderr)


__all__ = [
    'AttributionError',
    'ClientKitError',
    'CommitParseError',
    'ContainerInvocationError',
    'ContentHashLookupError',
    'E',
    'ERRORS',
    'ErrorCode',
    'ErrorInfo',
    'ExternalServiceError',
    'TotalBatchFailure',
    'VersionDerivationError',
    'explain',
    'render_error',
]
