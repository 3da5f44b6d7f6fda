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

"""Per-library generation and release state.

The state file ``.librarian/state.yaml`` is the persisted form of a
:class:`Batch`: every library in a language repository, plus the
container image used to generate and build them. It is read at the
start of a run and written back at the end with libraries sorted by ID,
so diffs stay stable.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Batch               │ The whole repo's checklist of libraries and   │
    │                     │ the container image that builds them.         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Library             │ One row: its version, the paths it owns, the  │
    │                     │ APIs it is generated from.                    │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ReleaseNoteCommit   │ A change staged for the next release, already │
    │                     │ flattened for release notes.                  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Atomic save         │ Write to a temp file first, then rename.      │
    │                     │ If we crash mid-write, the old file is fine.  │
    └─────────────────────┴────────────────────────────────────────────────┘

Usage::

    from clientkit.state import load_state, save_state

    batch = load_state(repo / '.librarian' / 'state.yaml')
    batch.library('secretmanager').version = '1.3.0'
    save_state(repo / '.librarian' / 'state.yaml', batch)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from clientkit.errors import E, ClientKitError, VersionDerivationError
from clientkit.logging import get_logger
from clientkit.versioning import parse_version

logger = get_logger(__name__)

LIBRARIAN_DIR = '.librarian'
STATE_FILENAME = 'state.yaml'


@dataclass(frozen=True)
class ApiState:
    """An API a library is generated from.

    Attributes:
        path: API path relative to the API source root,
            e.g. ``google/cloud/secretmanager/v1``.
        service_config: Service config file name inside ``path``.
        status: ``new`` until the library has been configured for it.
    """

    path: str
    service_config: str = ''
    status: str = ''


@dataclass(frozen=True)
class ReleaseNoteCommit:
    """The persisted, denormalized form of a staged change.

    Attributes:
        type: Conventional commit type.
        subject: Commit subject.
        body: Commit body.
        commit_hash: Full SHA of the commit in the language repository.
        piper_cl_number: Upstream ``PiperOrigin-RevId``, if any.
        library_ids: Comma-joined library IDs this change applies to.
    """

    type: str
    subject: str
    body: str = ''
    commit_hash: str = ''
    piper_cl_number: str = ''
    library_ids: str = ''

    def is_bulk(self, threshold: int) -> bool:
        """Whether the change already names at least ``threshold`` libraries."""
        return len(self.library_id_list()) >= threshold

    def library_id_list(self) -> list[str]:
        """The individual library IDs, trimmed, without empty entries."""
        return [lid.strip() for lid in self.library_ids.split(',') if lid.strip()]


@dataclass
class Library:
    """Generation and release state of one library.

    Attributes:
        id: Unique library identifier.
        version: Current semantic version.
        previous_version: ``version`` before the current staging pass.
        last_generated_commit: API source commit of the last generation.
        apis: APIs this library is generated from.
        source_roots: Path prefixes owned by the library.
        preserve_regex: Files under source roots kept during clean.
        remove_regex: Files under source roots removed during clean.
        release_exclude_paths: Paths never counted as releasable changes.
        tag_format: Deprecated per-library tag format.
        release_triggered: Set once a release is staged.
        changes: Changes accumulated for the pending release.
    """

    id: str
    version: str = ''
    previous_version: str = ''
    last_generated_commit: str = ''
    apis: list[ApiState] = field(default_factory=list)
    source_roots: list[str] = field(default_factory=list)
    preserve_regex: list[str] = field(default_factory=list)
    remove_regex: list[str] = field(default_factory=list)
    release_exclude_paths: list[str] = field(default_factory=list)
    tag_format: str = ''
    release_triggered: bool = False
    changes: list[ReleaseNoteCommit] = field(default_factory=list)

    @property
    def api_paths(self) -> list[str]:
        """Paths of every API this library is generated from."""
        return [api.path for api in self.apis]


@dataclass
class Batch:
    """All libraries of one language repository, processed in one run.

    Attributes:
        image: Container image reference used for every library.
        libraries: Libraries in file order.
    """

    image: str = ''
    libraries: list[Library] = field(default_factory=list)

    def library(self, library_id: str) -> Library | None:
        """Return the library with ``library_id``, or ``None``."""
        for lib in self.libraries:
            if lib.id == library_id:
                return lib
        return None

    def ids(self) -> list[str]:
        """Library IDs in file order."""
        return [lib.id for lib in self.libraries]

    def triggered(self) -> list[Library]:
        """Libraries with a staged release."""
        return [lib for lib in self.libraries if lib.release_triggered]

    def sort(self) -> None:
        """Sort libraries by ID in place."""
        self.libraries.sort(key=lambda lib: lib.id)

    def validate(self) -> None:
        """Check IDs are non-empty and unique, and versions are semver.

        Raises:
            ClientKitError: On the first violation found.
        """
        seen: set[str] = set()
        for lib in self.libraries:
            if not lib.id:
                raise ClientKitError(E.STATE_CORRUPTED, 'A library in the state file has no id.')
            if lib.id in seen:
                raise ClientKitError(
                    E.STATE_DUPLICATE_LIBRARY,
                    f"Library '{lib.id}' appears more than once in the state file.",
                    hint='Library IDs must be unique within a repository.',
                )
            seen.add(lib.id)
            if lib.version:
                try:
                    parse_version(lib.version)
                except VersionDerivationError as exc:
                    raise ClientKitError(
                        E.STATE_CORRUPTED,
                        f"Library '{lib.id}' has invalid version {lib.version!r}.",
                        hint=exc.hint,
                    ) from exc


def library_to_dict(lib: Library) -> dict[str, Any]:
    """Serialize ``lib`` to the mapping used by the state file and container requests."""
    data: dict[str, Any] = {
        'id': lib.id,
        'version': lib.version,
        'last_generated_commit': lib.last_generated_commit,
        'apis': [
            {'path': api.path, 'service_config': api.service_config, 'status': api.status}
            for api in lib.apis
        ],
        'source_roots': list(lib.source_roots),
        'preserve_regex': list(lib.preserve_regex),
        'remove_regex': list(lib.remove_regex),
        'release_exclude_paths': list(lib.release_exclude_paths),
        'tag_format': lib.tag_format,
    }
    if lib.release_triggered:
        data['release_triggered'] = True
        data['previous_version'] = lib.previous_version
        data['changes'] = [
            {
                'type': c.type,
                'subject': c.subject,
                'body': c.body,
                'commit_hash': c.commit_hash,
                'piper_cl_number': c.piper_cl_number,
                'library_ids': c.library_ids,
            }
            for c in lib.changes
        ]
    return data


def _str_list(raw: Any) -> list[str]:  # noqa: ANN401 - YAML value
    return [str(item) for item in raw or []]


def library_from_dict(raw: dict[str, Any]) -> Library:
    """Build a :class:`Library` from a state-file or container-response mapping."""
    return Library(
        id=str(raw.get('id', '') or ''),
        version=str(raw.get('version', '') or ''),
        previous_version=str(raw.get('previous_version', '') or ''),
        last_generated_commit=str(raw.get('last_generated_commit', '') or ''),
        apis=[
            ApiState(
                path=str(api.get('path', '')),
                service_config=str(api.get('service_config', '') or ''),
                status=str(api.get('status', '') or ''),
            )
            for api in raw.get('apis') or []
        ],
        source_roots=_str_list(raw.get('source_roots')),
        preserve_regex=_str_list(raw.get('preserve_regex')),
        remove_regex=_str_list(raw.get('remove_regex')),
        release_exclude_paths=_str_list(raw.get('release_exclude_paths')),
        tag_format=str(raw.get('tag_format', '') or ''),
        release_triggered=bool(raw.get('release_triggered', False)),
        changes=[
            ReleaseNoteCommit(
                type=str(c.get('type', '')),
                subject=str(c.get('subject', '')),
                body=str(c.get('body', '') or ''),
                commit_hash=str(c.get('commit_hash', '') or ''),
                piper_cl_number=str(c.get('piper_cl_number', '') or ''),
                library_ids=str(c.get('library_ids', '') or ''),
            )
            for c in raw.get('changes') or []
        ],
    )


def state_from_yaml(text: str, *, source: str = STATE_FILENAME) -> Batch:
    """Parse and validate state YAML text.

    Raises:
        ClientKitError: If the YAML is malformed or fails validation.
    """
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ClientKitError(
            E.STATE_CORRUPTED,
            f'{source} contains invalid YAML: {exc}',
            hint='Restore the state file from version control.',
        ) from exc
    if not isinstance(raw, dict):
        raise ClientKitError(E.STATE_CORRUPTED, f'{source} must contain a mapping at the top level.')

    try:
        batch = Batch(
            image=str(raw.get('image', '') or ''),
            libraries=[library_from_dict(lib) for lib in raw.get('libraries') or []],
        )
    except (AttributeError, TypeError) as exc:
        raise ClientKitError(E.STATE_CORRUPTED, f'{source} has a malformed library entry: {exc}') from exc
    batch.validate()
    return batch


def batch_to_dict(batch: Batch) -> dict[str, Any]:
    """Serialize ``batch`` with libraries sorted by ID."""
    return {
        'image': batch.image,
        'libraries': [library_to_dict(lib) for lib in sorted(batch.libraries, key=lambda lib: lib.id)],
    }


def state_to_yaml(batch: Batch) -> str:
    """Serialize ``batch`` as state-file YAML."""
    return yaml.safe_dump(batch_to_dict(batch), sort_keys=False, indent=2, default_flow_style=False, allow_unicode=True)


def load_state(path: Path) -> Batch:
    """Load the state file.

    Raises:
        ClientKitError: If the file is missing or invalid.
    """
    if not path.is_file():
        raise ClientKitError(
            E.STATE_NOT_FOUND,
            f'No state file at {path}.',
            hint='Run clientkit from the root of a language repository, or pass --repo.',
        )
    batch = state_from_yaml(path.read_text(encoding='utf-8'), source=str(path))
    logger.info('state_loaded', path=str(path), libraries=len(batch.libraries))
    return batch


def save_state(path: Path, batch: Batch) -> None:
    """Atomically write ``batch`` to ``path``, sorted by library ID.

    Uses ``tempfile`` + ``os.replace``: if the process dies mid-write,
    the previous state file is untouched.
    """
    batch.sort()
    content = state_to_yaml(batch)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix='.state-', suffix='.tmp')
    closed = False
    try:
        os.write(fd, content.encode('utf-8'))
        os.close(fd)
        closed = True
        os.chmod(tmp_path, 0o644)  # mkstemp creates 0600; the state file is committed.
        os.replace(tmp_path, path)
    except BaseException:
        if not closed:
            os.close(fd)
        Path(tmp_path).unlink(missing_ok=True)
        raise
    logger.debug('state_saved', path=str(path), libraries=len(batch.libraries))


def state_path(repo_root: Path) -> Path:
    """Path of the state file inside ``repo_root``."""
    return repo_root / LIBRARIAN_DIR / STATE_FILENAME


__all__ = [
    'ApiState',
    'Batch',
    'LIBRARIAN_DIR',
    'Library',
    'ReleaseNoteCommit',
    'STATE_FILENAME',
    'batch_to_dict',
    'library_from_dict',
    'library_to_dict',
    'load_state',
    'save_state',
    'state_from_yaml',
    'state_path',
    'state_to_yaml',
]
