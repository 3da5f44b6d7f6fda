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

"""Decide whether a library needs regeneration.

The first rule that matches wins::

    generate_blocked in config      → skip
    no API paths                    → skip
    --generate-unchanged            → generate
    no last_generated_commit        → generate  (can't prove nothing changed)
    any API path hash differs       → generate
      between last_generated_commit
      and source HEAD
    otherwise                       → skip

Hashes are tree-object hashes from the API source repository, so the
answer is stable: with no new commits touching an API path, asking
twice gives "skip" twice.
"""

from __future__ import annotations

from dataclasses import dataclass

from clientkit.backends.vcs import VCS
from clientkit.config import ClientKitConfig
from clientkit.errors import ContentHashLookupError
from clientkit.logging import get_logger
from clientkit.state import Library

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationDecision:
    """Outcome of :func:`should_generate`.

    Attributes:
        generate: Whether to regenerate the library.
        reason: Short machine-friendly reason, logged with skips.
        blocked: Whether the skip is administrative.
    """

    generate: bool
    reason: str
    blocked: bool = False


async def should_generate(
    library: Library,
    source: VCS,
    *,
    config: ClientKitConfig | None = None,
    generate_unchanged: bool = False,
) -> GenerationDecision:
    """Decide whether ``library`` must be regenerated.

    Args:
        library: The library to check.
        source: The API source repository.
        config: Administrative config, for ``generate_blocked``.
        generate_unchanged: Regenerate even if no API changed.

    Raises:
        ContentHashLookupError: If the source repository cannot report a
            head or path hash.
    """
    lib_cfg = config.library_config(library.id) if config else None
    if lib_cfg is not None and lib_cfg.generate_blocked:
        logger.info('library_skipped', library=library.id, reason='generate_blocked')
        return GenerationDecision(generate=False, reason='generate_blocked', blocked=True)

    if not library.apis:
        logger.info('library_skipped', library=library.id, reason='no_apis')
        return GenerationDecision(generate=False, reason='no_apis')

    if generate_unchanged:
        return GenerationDecision(generate=True, reason='generate_unchanged')

    if not library.last_generated_commit:
        return GenerationDecision(generate=True, reason='no_last_generated_commit')

    try:
        head = await source.head_hash()
    except Exception as exc:
        raise ContentHashLookupError(f'failed to get head hash of the API source repository: {exc}') from exc

    for path in library.api_paths:
        old = await _hash_for_path(source, library.last_generated_commit, path)
        new = await _hash_for_path(source, head, path)
        if old != new:
            logger.debug('api_changed', library=library.id, path=path, old=old[:8], new=new[:8])
            return GenerationDecision(generate=True, reason='api_changed')

    logger.info('library_skipped', library=library.id, reason='apis_unchanged')
    return GenerationDecision(generate=False, reason='apis_unchanged')


async def _hash_for_path(source: VCS, sha: str, path: str) -> str:
    try:
        return await source.content_hash(sha, path)
    except Exception as exc:
        raise ContentHashLookupError(
            f'failed to get hash for {path} at {sha[:8]}: {exc}',
            hint='Check that last_generated_commit exists in the API source repository.',
        ) from exc


__all__ = [
    'GenerationDecision',
    'should_generate',
]
