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

"""Administrative configuration reader for clientkit.

Reads ``.librarian/config.yaml`` from a language repository and returns
a validated :class:`ClientKitConfig`. This file holds the overrides a
human maintainer sets by hand, separate from the machine-written state
file.

Key Concepts (ELI5)::

    ┌─────────────────────────┬────────────────────────────────────────────┐
    │ Concept                 │ ELI5 Explanation                           │
    ├─────────────────────────┼────────────────────────────────────────────┤
    │ generate_blocked        │ "Don't regenerate this library." The      │
    │                         │ batch counts it as skipped.               │
    ├─────────────────────────┼────────────────────────────────────────────┤
    │ release_blocked         │ "Don't release this library" unless it is │
    │                         │ asked for by name.                        │
    ├─────────────────────────┼────────────────────────────────────────────┤
    │ next_version            │ A floor for the next version. The higher  │
    │                         │ of this and the derived version wins.     │
    ├─────────────────────────┼────────────────────────────────────────────┤
    │ global_files_allowlist  │ Repo-wide files the container may touch,  │
    │                         │ copied back verbatim after it runs.       │
    ├─────────────────────────┼────────────────────────────────────────────┤
    │ Fuzzy key matching      │ A typo'd key gets a "did you mean?" hint. │
    └─────────────────────────┴────────────────────────────────────────────┘

Supported keys::

    bulk_change_threshold: 10
    tag_format: '{id}/v{version}'
    global_files_allowlist:
      - path: go.work
        permissions: read-write
    libraries:
      - id: secretmanager
        generate_blocked: false
        release_blocked: false
        tag_format: '{id}/v{version}'
        next_version: 2.0.0
        skip_github_release_creation: false

Usage::

    from clientkit.config import load_config

    cfg = load_config(Path('.librarian/config.yaml'))
    if cfg.library_config('secretmanager').generate_blocked:
        ...
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from clientkit.errors import E, ClientKitError
from clientkit.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = 'config.yaml'

# Commits sharing a hash and subject across at least this many libraries
# are rendered once, in the bulk section.
DEFAULT_BULK_CHANGE_THRESHOLD = 10

VALID_KEYS: frozenset[str] = frozenset({
    'bulk_change_threshold',
    'global_files_allowlist',
    'libraries',
    'tag_format',
})

VALID_LIBRARY_KEYS: frozenset[str] = frozenset({
    'generate_blocked',
    'id',
    'next_version',
    'release_blocked',
    'skip_github_release_creation',
    'tag_format',
})

ALLOWED_PERMISSIONS: frozenset[str] = frozenset({'read-only', 'write-only', 'read-write'})

_LIBRARY_TYPE_MAP: dict[str, type] = {
    'id': str,
    'generate_blocked': bool,
    'release_blocked': bool,
    'tag_format': str,
    'next_version': str,
    'skip_github_release_creation': bool,
}


@dataclass(frozen=True)
class GlobalFile:
    """A repository-wide file the language container may read or write.

    Attributes:
        path: Path relative to the repository root.
        permissions: ``read-only``, ``write-only`` or ``read-write``.
    """

    path: str
    permissions: str = 'read-only'


@dataclass(frozen=True)
class LibraryConfig:
    """Per-library administrative overrides."""

    id: str
    generate_blocked: bool = False
    release_blocked: bool = False
    tag_format: str = ''
    next_version: str = ''
    skip_github_release_creation: bool = False


@dataclass(frozen=True)
class ClientKitConfig:
    """Validated contents of ``.librarian/config.yaml``.

    Attributes:
        global_files_allowlist: Files copied verbatim between the
            container output and the repository.
        libraries: Per-library overrides.
        bulk_change_threshold: Group size at which independently
            attributed commits collapse into one bulk entry.
        tag_format: Repository-wide tag format.
        config_path: Where the config was read from, or ``None``.
    """

    global_files_allowlist: list[GlobalFile] = field(default_factory=list)
    libraries: list[LibraryConfig] = field(default_factory=list)
    bulk_change_threshold: int = DEFAULT_BULK_CHANGE_THRESHOLD
    tag_format: str = ''
    config_path: Path | None = None

    def library_config(self, library_id: str) -> LibraryConfig | None:
        """Return the overrides for ``library_id``, or ``None``."""
        for lib in self.libraries:
            if lib.id == library_id:
                return lib
        return None


def _invalid_key(key: str, valid: frozenset[str], context: str) -> ClientKitError:
    suggestion = difflib.get_close_matches(key, valid, n=1, cutoff=0.6)
    hint = f"Did you mean '{suggestion[0]}'?" if suggestion else f'Valid keys: {", ".join(sorted(valid))}.'
    return ClientKitError(
        code=E.CONFIG_INVALID_KEY,
        message=f"Unknown key '{key}' in {context}.",
        hint=hint,
    )


def _parse_library(raw: Any, index: int) -> LibraryConfig:  # noqa: ANN401 - YAML value
    context = f'libraries[{index}]'
    if not isinstance(raw, dict):
        raise ClientKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'{context} must be a mapping, got {type(raw).__name__}',
        )
    for key, value in raw.items():
        if key not in VALID_LIBRARY_KEYS:
            raise _invalid_key(key, VALID_LIBRARY_KEYS, context)
        expected = _LIBRARY_TYPE_MAP[key]
        if key == 'next_version' and isinstance(value, (int, float)):
            value = str(value)
        if not isinstance(value, expected):
            raise ClientKitError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"'{context}.{key}' must be {expected.__name__}, got {type(value).__name__}",
                hint=f'Check the value of {key} in {CONFIG_FILENAME}.',
            )
    if not raw.get('id'):
        raise ClientKitError(code=E.CONFIG_INVALID_VALUE, message=f'{context} is missing an id')
    return LibraryConfig(**{k: str(v) if k == 'next_version' else v for k, v in raw.items()})


def _parse_global_file(raw: Any, index: int) -> GlobalFile:  # noqa: ANN401 - YAML value
    if not isinstance(raw, dict) or not raw.get('path'):
        raise ClientKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'global_files_allowlist[{index}] must be a mapping with a path',
        )
    permissions = raw.get('permissions', 'read-only')
    if permissions not in ALLOWED_PERMISSIONS:
        raise ClientKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"permissions must be one of {sorted(ALLOWED_PERMISSIONS)}, got '{permissions}'",
            hint="Use 'read-only', 'write-only' or 'read-write'.",
        )
    return GlobalFile(path=str(raw['path']), permissions=permissions)


def config_from_yaml(text: str, *, config_path: Path | None = None) -> ClientKitConfig:
    """Parse and validate config YAML text.

    Raises:
        ClientKitError: On malformed YAML, unknown keys or bad values.
    """
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ClientKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to parse {config_path or CONFIG_FILENAME}: {exc}',
        ) from exc
    if not isinstance(raw, dict):
        raise ClientKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'{config_path or CONFIG_FILENAME} must contain a mapping at the top level',
        )

    for key in raw:
        if key not in VALID_KEYS:
            raise _invalid_key(key, VALID_KEYS, CONFIG_FILENAME)

    threshold = raw.get('bulk_change_threshold', DEFAULT_BULK_CHANGE_THRESHOLD)
    if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
        raise ClientKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'bulk_change_threshold must be a positive integer, got {threshold!r}',
        )

    tag_format = raw.get('tag_format') or ''
    if not isinstance(tag_format, str):
        raise ClientKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'tag_format must be a string, got {type(tag_format).__name__}',
        )

    libraries = [_parse_library(lib, i) for i, lib in enumerate(raw.get('libraries') or [])]
    seen: set[str] = set()
    for lib in libraries:
        if lib.id in seen:
            raise ClientKitError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"library '{lib.id}' is configured more than once",
            )
        seen.add(lib.id)

    return ClientKitConfig(
        global_files_allowlist=[_parse_global_file(f, i) for i, f in enumerate(raw.get('global_files_allowlist') or [])],
        libraries=libraries,
        bulk_change_threshold=threshold,
        tag_format=tag_format,
        config_path=config_path,
    )


def load_config(config_path: Path) -> ClientKitConfig:
    """Load and validate ``config.yaml``.

    A missing file is not an error; it yields an empty configuration.

    Raises:
        ClientKitError: If the file exists but contains invalid config.
    """
    if not config_path.is_file():
        logger.debug('no_clientkit_config', path=str(config_path))
        return ClientKitConfig()

    try:
        text = config_path.read_text(encoding='utf-8')
    except OSError as exc:
        raise ClientKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to read {config_path}: {exc}',
        ) from exc
    return config_from_yaml(text, config_path=config_path)


__all__ = [
    'CONFIG_FILENAME',
    'ClientKitConfig',
    'DEFAULT_BULK_CHANGE_THRESHOLD',
    'GlobalFile',
    'LibraryConfig',
    'config_from_yaml',
    'load_config',
]
