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

"""Tag and release: turn merged release pull requests into GitHub releases.

After a release pull request (label ``release:pending``) is merged,
this module:

1. Finds the merged pull requests, either the one given or every one
   merged with the pending label in the last 30 days.
2. Reads the per-library releases back out of the pull request body.
3. Loads ``state.yaml`` and ``config.yaml`` from the base branch.
4. Tags the merge commit ``release-<number>``.
5. Creates one GitHub release per library, unless its config says
   ``skip_github_release_creation``.
6. Swaps ``release:pending`` for ``release:done``.

A failing pull request does not stop the others; the run fails at the
end if any of them failed.

Tag flow::

    search "label:release:pending merged:>=<30 days ago>"
         │
         ▼
    parse_release_body(pr.body) ──▶ [LibraryRelease, ...]
         │
         ▼
    forge.create_tag("release-<n>", merge_sha)
         │
         ▼
    for each release:
        forge.create_release("<id>-<version>", name="<id> <version>")
         │
         ▼
    forge.replace_labels(remove=release:pending, add=release:done)

Usage::

    from clientkit.release import tag_and_release

    result = await tag_and_release(forge=github_backend)
    print(result.processed, result.failed)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from clientkit.backends.forge import Forge
from clientkit.config import CONFIG_FILENAME, ClientKitConfig, config_from_yaml
from clientkit.errors import E, ClientKitError, ExternalServiceError
from clientkit.logging import get_logger
from clientkit.pipeline import RELEASE_PENDING_LABEL
from clientkit.pr_body import LibraryRelease, parse_release_body
from clientkit.state import LIBRARIAN_DIR, STATE_FILENAME, Batch, state_from_yaml
from clientkit.tags import determine_tag_format, format_tag

logger = get_logger(__name__)

RELEASE_DONE_LABEL = 'release:done'
PULL_REQUEST_URL_SEGMENTS = 7
SEARCH_WINDOW = timedelta(days=30)


@dataclass
class TagAndReleaseResult:
    """Outcome of a tag-and-release run.

    Attributes:
        processed: Pull requests that were fully handled.
        failed: Pull requests that hit an error, with the error message.
        releases_created: Tags that got a GitHub release.
    """

    processed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    releases_created: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True if no pull request failed."""
        return not self.failed


def parse_pull_request_url(url: str) -> int:
    """Return the number from ``https://github.com/<owner>/<repo>/pull/<n>``.

    Raises:
        ClientKitError: If the URL does not have that shape.
    """
    segments = url.split('/')
    if len(segments) != PULL_REQUEST_URL_SEGMENTS:
        raise ClientKitError(
            E.CONFIG_INVALID_VALUE,
            f'Invalid pull request URL: {url}',
            hint='Expected https://github.com/<owner>/<repo>/pull/<number>.',
        )
    try:
        return int(segments[-1])
    except ValueError as exc:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, f'Invalid pull request number: {segments[-1]}') from exc


def search_query(now: datetime | None = None) -> str:
    """Search query for release pull requests merged in the last 30 days."""
    since = (now or datetime.now(tz=timezone.utc)) - SEARCH_WINDOW
    return f'label:{RELEASE_PENDING_LABEL} merged:>={since.strftime("%Y-%m-%dT%H:%M:%SZ")}'


async def pull_requests_to_process(forge: Forge, pull_request: str = '') -> list[dict[str, Any]]:
    """Return the single requested pull request, or every recent pending one."""
    if pull_request:
        number = parse_pull_request_url(pull_request)
        logger.info('processing_single_pull_request', pr=number)
        return [await forge.get_pr(number)]
    query = search_query()
    logger.info('searching_pull_requests', query=query)
    return await forge.search_merged_prs(query)


async def _load_remote_state(forge: Forge, ref: str) -> Batch:
    path = f'{LIBRARIAN_DIR}/{STATE_FILENAME}'
    text = await forge.raw_content(path, ref=ref)
    if not text:
        raise ClientKitError(E.STATE_NOT_FOUND, f'{path} not found on branch {ref}.')
    return state_from_yaml(text, source=f'{path}@{ref}')


async def _load_remote_config(forge: Forge, ref: str) -> ClientKitConfig | None:
    path = f'{LIBRARIAN_DIR}/{CONFIG_FILENAME}'
    try:
        text = await forge.raw_content(path, ref=ref)
        return config_from_yaml(text) if text else None
    except ClientKitError as exc:
        logger.warning('remote_config_unreadable', path=path, ref=ref, error=str(exc))
        return None


async def _create_releases(
    forge: Forge,
    releases: list[LibraryRelease],
    *,
    state: Batch,
    config: ClientKitConfig | None,
    sha: str,
    result: TagAndReleaseResult,
) -> None:
    for release in releases:
        library = state.library(release.library_id)
        if library is None:
            raise ClientKitError(E.LIBRARY_NOT_FOUND, f"Library '{release.library_id}' not found in the state file.")
        lib_cfg = config.library_config(release.library_id) if config else None
        if lib_cfg is not None and lib_cfg.skip_github_release_creation:
            logger.info('release_creation_skipped', library=release.library_id)
            continue
        tag = format_tag(determine_tag_format(library, config), release.library_id, release.version)
        created = await forge.create_release(
            tag,
            name=f'{release.library_id} {release.version}',
            body=release.body(),
            target_commitish=sha,
        )
        if not created.ok:
            raise ExternalServiceError(f'failed to create release {tag}: {created.error_summary}')
        logger.info('release_created', library=release.library_id, version=release.version, tag=tag)
        result.releases_created.append(tag)


async def process_pull_request(forge: Forge, pr: dict[str, Any], result: TagAndReleaseResult) -> None:
    """Tag and release one merged release pull request.

    Raises:
        ClientKitError: If the body, state or any GitHub call is unusable.
    """
    number = int(pr.get('number', 0))
    releases = parse_release_body(pr.get('body') or '')
    if not releases:
        logger.warning('no_release_details', pr=number)
        return

    # 1. Load state and config from the branch the release merged into.
    ref = pr.get('baseRefName') or 'main'
    state = await _load_remote_state(forge, ref)
    config = await _load_remote_config(forge, ref)

    # 2. Tag the merge commit.
    sha = (pr.get('mergeCommit') or {}).get('oid', '')
    if not sha:
        raise ExternalServiceError(f'pull request #{number} has no merge commit')
    tag = f'release-{number}'
    tagged = await forge.create_tag(tag, sha)
    if not tagged.ok:
        raise ExternalServiceError(f'failed to create tag {tag}: {tagged.error_summary}')

    # 3. One GitHub release per library.
    await _create_releases(forge, releases, state=state, config=config, sha=sha, result=result)

    # 4. Mark the pull request done.
    relabelled = await forge.replace_labels(number, remove=[RELEASE_PENDING_LABEL], add=[RELEASE_DONE_LABEL])
    if not relabelled.ok:
        raise ExternalServiceError(f'failed to replace labels on #{number}: {relabelled.error_summary}')
    logger.info('labels_updated', pr=number, removed=RELEASE_PENDING_LABEL, added=RELEASE_DONE_LABEL)


async def tag_and_release(*, forge: Forge, pull_request: str = '') -> TagAndReleaseResult:
    """Run tag-and-release over every merged release pull request.

    Args:
        forge: GitHub backend for the language repository.
        pull_request: URL of one pull request to process. Empty means
            search for recent pending ones.

    Raises:
        ExternalServiceError: After all pull requests were tried, if any
            of them failed.
    """
    result = TagAndReleaseResult()
    prs = await pull_requests_to_process(forge, pull_request)
    if not prs:
        logger.info('no_pull_requests_to_process')
        return result

    for pr in prs:
        number = int(pr.get('number', 0))
        try:
            await process_pull_request(forge, pr, result)
        except ClientKitError as exc:
            logger.error('pull_request_failed', pr=number, error=str(exc))
            result.failed[number] = str(exc)
            continue
        logger.info('pull_request_processed', pr=number)
        result.processed.append(number)

    if result.failed:
        raise ExternalServiceError(
            f'failed to process {len(result.failed)} pull request(s): {", ".join(f"#{n}" for n in result.failed)}',
        )
    return result


__all__ = [
    'PULL_REQUEST_URL_SEGMENTS',
    'RELEASE_DONE_LABEL',
    'TagAndReleaseResult',
    'parse_pull_request_url',
    'process_pull_request',
    'pull_requests_to_process',
    'search_query',
    'tag_and_release',
]
