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

"""Pull request bodies: release notes, generation and onboarding.

Three narratives are produced here, each with a fixed grammar that
:mod:`clientkit.pr_body` and the commit parser read back later.

Key Concepts (ELI5)::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ Plain-English                               │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Bulk change             │ One change that touched many libraries.     │
    │                         │ Listed once under "Bulk Changes" instead   │
    │                         │ of once per library.                        │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Library-scoped change   │ Listed under each library it names, in the  │
    │                         │ section for its type (Features, Bug Fixes). │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Nested commit block     │ BEGIN_NESTED_COMMIT ... END_NESTED_COMMIT.  │
    │                         │ The generation PR squashes upstream commits │
    │                         │ into these so the release can find them.    │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Template rendering      │ Uses Python string.Template for simple      │
    │                         │ variable substitution.                      │
    └─────────────────────────┴─────────────────────────────────────────────┘

Release notes flow::

    Batch (triggered libraries only)
         │
         ▼
    separate_changes()  group by (commit_hash, subject)
         │
         ├── already bulk, or group size ≥ threshold → bulk entry
         └── otherwise → one entry per named library
         │
         ▼
    format_release_notes() → markdown string

Only ``feat``, ``fix``, ``perf``, ``revert`` and ``docs`` get a section.
Other types still count for versioning.

Usage::

    from clientkit.release_notes import format_release_notes

    body = format_release_notes(batch, owner='googleapis', repo='google-cloud-go')
"""

from __future__ import annotations

import dataclasses
import posixpath
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from string import Template

from clientkit import __version__
from clientkit.attribution import commits_since_last_generation, included_for_release
from clientkit.backends.vcs import VCS
from clientkit.commits import LIBRARY_IDS_FOOTER, PIPER_FOOTER, ConventionalCommit, parse_commits
from clientkit.config import DEFAULT_BULK_CHANGE_THRESHOLD, ClientKitConfig
from clientkit.errors import E, AttributionError, ClientKitError
from clientkit.logging import get_logger
from clientkit.state import Batch, Library, ReleaseNoteCommit
from clientkit.tags import determine_tag_format, format_tag

logger = get_logger(__name__)

COMMIT_TYPE_HEADINGS: dict[str, str] = {
    'feat': 'Features',
    'fix': 'Bug Fixes',
    'perf': 'Performance Improvements',
    'revert': 'Reverts',
    'docs': 'Documentation',
    'style': 'Styles',
    'chore': 'Miscellaneous Chores',
    'refactor': 'Code Refactoring',
    'test': 'Tests',
    'build': 'Build System',
    'ci': 'Continuous Integration',
}

# Section order. Types not listed are never rendered.
RENDERED_TYPES: tuple[str, ...] = ('feat', 'fix', 'perf', 'revert', 'docs')

NO_COMMITS_MESSAGE = 'No commit is found since last generation'

FAILED_GENERATION_COMMENT = (
    'One or more libraries have failed to generate, please review PR description for a list of failed libraries.\n'
    'For each failed library, open a ticket in that library\u2019s repository and then you may resolve this comment and merge.\n'
)

DEFAULT_SOURCE_REPO = 'googleapis/googleapis'

UPDATE_IMAGE_SUBJECT = 'feat: update image to {image}'

_RELEASE_HEADER = Template(
    'PR created by clientkit to initialize a release. Merging this PR will auto trigger a release.\n'
    '\n'
    'Clientkit Version: $tool_version\n'
    'Language Image: $image\n'
)

_LIBRARY_SECTION = Template(
    '<details><summary>$library_id: $version</summary>\n'
    '\n'
    '## [$version](https://github.com/$owner/$repo/compare/$previous_tag...$new_tag) ($date)\n'
    '$sections'
    '\n</details>\n\n\n'
)

_TYPE_SECTION = Template('\n### $heading\n$entries')

_LIBRARY_ENTRY = Template('\n* $subject$piper ([$short_sha](https://github.com/$owner/$repo/commit/$short_sha))\n')

_BULK_SECTION = Template('<details><summary>Bulk Changes</summary>\n$entries\n</details>\n')

_BULK_ENTRY = Template(
    '\n* $type: $subject$piper ([$short_sha](https://github.com/$owner/$repo/commit/$short_sha))\n  Libraries: $library_ids'
)

_GENERATION_BODY = Template(
    'PR created by clientkit to generate Cloud Client Libraries code from protos.\n'
    '\n'
    'BEGIN_COMMIT\n'
    '$commits'
    '\nEND_COMMIT\n'
    '\n'
    'This pull request is generated with proto changes between\n'
    '[$source_repo@$start_short](https://github.com/$source_repo/commit/$start_sha)\n'
    '(exclusive) and\n'
    '[$source_repo@$end_short](https://github.com/$source_repo/commit/$end_sha)\n'
    '(inclusive).\n'
    '\n'
    'Clientkit Version: $tool_version\n'
    'Language Image: $image'
    '$failed\n'
)

_NESTED_COMMIT = Template(
    '\nBEGIN_NESTED_COMMIT\n'
    '$type: $subject\n'
    '$body\n'
    '\n'
    'PiperOrigin-RevId: $piper\n'
    'Library-IDs: $library_ids\n'
    'Source-link: [$source_repo@$short_sha](https://github.com/$source_repo/commit/$short_sha)\n'
    'END_NESTED_COMMIT\n'
)

_ONBOARDING_BODY = Template(
    'PR created by clientkit to onboard a new Cloud Client Library.\n'
    '\n'
    'BEGIN_COMMIT\n'
    '\n'
    'feat: onboard a new library\n'
    '\n'
    'PiperOrigin-RevId: $piper\n'
    'Library-IDs: $library_id\n'
    '\n'
    'END_COMMIT\n'
    '\n'
    'Clientkit Version: $tool_version\n'
    'Language Image: $image\n'
)


def short_sha(sha: str) -> str:
    """First eight characters of ``sha``."""
    return sha[:8]


def failed_section(heading: str, library_ids: Sequence[str]) -> str:
    """Render a ``## <heading>`` list of failed libraries, or empty string."""
    if not library_ids:
        return ''
    return f'\n\n## {heading}' + ''.join(f'\n- {lid}' for lid in library_ids)


@dataclass
class SeparatedChanges:
    """Staged changes split into bulk and per-library entries.

    Attributes:
        bulk: Bulk entries, sorted by commit hash.
        by_library: Library-scoped entries keyed by library ID.
    """

    bulk: list[ReleaseNoteCommit] = field(default_factory=list)
    by_library: dict[str, list[ReleaseNoteCommit]] = field(default_factory=dict)


def separate_changes(batch: Batch, threshold: int = DEFAULT_BULK_CHANGE_THRESHOLD) -> SeparatedChanges:
    """Split the changes of every triggered library into bulk and per-library entries.

    Changes are grouped by ``(commit_hash, subject)``. A group is bulk if
    its first member already names ``threshold`` or more libraries, or if
    the group itself has ``threshold`` or more members. Each change ends
    up in exactly one bulk entry or in the sections of the libraries it
    names, once per library.
    """
    groups: dict[tuple[str, str], list[ReleaseNoteCommit]] = {}
    for library in batch.triggered():
        for change in library.changes:
            groups.setdefault((change.commit_hash, change.subject), []).append(change)

    result = SeparatedChanges()
    for (commit_hash, subject), members in groups.items():
        first = members[0]
        if first.is_bulk(threshold):
            result.bulk.append(first)
            continue
        if len(members) >= threshold:
            ids = sorted({lid for m in members for lid in m.library_id_list()})
            result.bulk.append(dataclasses.replace(first, library_ids=','.join(ids)))
            logger.debug('bulk_change_collapsed', commit=short_sha(commit_hash), subject=subject, libraries=len(ids))
            continue
        for member in members:
            for library_id in member.library_id_list():
                entries = result.by_library.setdefault(library_id, [])
                if any(e.commit_hash == commit_hash and e.subject == subject for e in entries):
                    continue
                entries.append(member)

    result.bulk.sort(key=lambda c: c.commit_hash)
    return result


def _piper_suffix(change: ReleaseNoteCommit) -> str:
    return f' (PiperOrigin-RevId: {change.piper_cl_number})' if change.piper_cl_number else ''


def _library_section(
    library: Library,
    changes: list[ReleaseNoteCommit],
    *,
    owner: str,
    repo: str,
    date: str,
    config: ClientKitConfig | None,
) -> str:
    tag_format = determine_tag_format(library, config)
    by_type: dict[str, list[ReleaseNoteCommit]] = {}
    for change in sorted(changes, key=lambda c: c.commit_hash):
        by_type.setdefault(change.type, []).append(change)

    sections = []
    for commit_type in RENDERED_TYPES:
        typed = by_type.get(commit_type)
        if not typed:
            continue
        entries = ''.join(
            _LIBRARY_ENTRY.safe_substitute(
                subject=c.subject,
                piper=_piper_suffix(c),
                short_sha=short_sha(c.commit_hash),
                owner=owner,
                repo=repo,
            )
            for c in typed
        )
        sections.append(_TYPE_SECTION.safe_substitute(heading=COMMIT_TYPE_HEADINGS[commit_type], entries=entries))

    return _LIBRARY_SECTION.safe_substitute(
        library_id=library.id,
        version=library.version,
        owner=owner,
        repo=repo,
        previous_tag=format_tag(tag_format, library.id, library.previous_version),
        new_tag=format_tag(tag_format, library.id, library.version),
        date=date,
        sections=''.join(sections),
    )


def format_release_notes(
    batch: Batch,
    *,
    owner: str,
    repo: str,
    config: ClientKitConfig | None = None,
    date: str = '',
    tool_version: str = __version__,
    failed: Sequence[str] = (),
) -> str:
    """Render the body of a release pull request.

    Args:
        batch: The batch after staging; only triggered libraries appear.
        owner: Repository owner, for compare and commit links.
        repo: Repository name, for compare and commit links.
        config: Administrative config, for tag formats and the bulk
            threshold.
        date: Release date, ``YYYY-MM-DD``. Defaults to today (UTC).
        tool_version: Version printed in the header.
        failed: Libraries whose staging failed.

    Returns:
        The release notes, stripped of surrounding whitespace.
    """
    threshold = config.bulk_change_threshold if config else DEFAULT_BULK_CHANGE_THRESHOLD
    date = date or datetime.now(tz=timezone.utc).strftime('%Y-%m-%d')
    separated = separate_changes(batch, threshold)

    parts = [_RELEASE_HEADER.safe_substitute(tool_version=tool_version, image=batch.image)]
    for library in batch.triggered():
        parts.append(
            _library_section(
                library,
                separated.by_library.get(library.id, []),
                owner=owner,
                repo=repo,
                date=date,
                config=config,
            )
        )
    if separated.bulk:
        entries = ''.join(
            _BULK_ENTRY.safe_substitute(
                type=c.type,
                subject=c.subject,
                piper=_piper_suffix(c),
                short_sha=short_sha(c.commit_hash),
                owner=owner,
                repo=repo,
                library_ids=c.library_ids,
            )
            for c in separated.bulk
        )
        parts.append(_BULK_SECTION.safe_substitute(entries=entries))
    parts.append(failed_section('Release staging failed for', failed))
    return ''.join(parts).strip()


def group_by_piper_and_subject(commits: Iterable[ConventionalCommit]) -> list[ConventionalCommit]:
    """Merge commits that share a ``PiperOrigin-RevId`` and subject.

    The merged commit is the first of its group, with a ``Library-IDs``
    footer naming every member's library. Commits without a piper
    reference are kept as they are, with ``Library-IDs`` set to their own
    library.
    """
    result: list[ConventionalCommit] = []
    groups: dict[str, list[ConventionalCommit]] = {}
    for commit in commits:
        piper = commit.footers.get(PIPER_FOOTER)
        if piper is None:
            footers = {**commit.footers, LIBRARY_IDS_FOOTER: commit.library_id}
            result.append(dataclasses.replace(commit, footers=footers))
            continue
        groups.setdefault(f'{piper}-{commit.subject}', []).append(commit)

    for members in groups.values():
        first = members[0]
        ids = ','.join(m.library_id for m in members)
        result.append(dataclasses.replace(first, footers={**first.footers, LIBRARY_IDS_FOOTER: ids}))
    return result


def render_generation_body(
    commits: Sequence[ConventionalCommit],
    *,
    start_sha: str,
    image: str,
    failed: Sequence[str] = (),
    tool_version: str = __version__,
    source_repo: str = DEFAULT_SOURCE_REPO,
) -> str:
    """Render a generation pull request body from already grouped commits.

    Commits are listed newest first; the newest one is the end of the
    proto range.
    """
    if not commits:
        return NO_COMMITS_MESSAGE
    ordered = sorted(commits, key=lambda c: c.when or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
    end_sha = ordered[0].commit_hash
    rendered = ''.join(
        _NESTED_COMMIT.safe_substitute(
            type=c.type,
            subject=c.subject,
            body=c.body,
            piper=c.footers.get(PIPER_FOOTER, ''),
            library_ids=c.footers.get(LIBRARY_IDS_FOOTER, ''),
            source_repo=source_repo,
            short_sha=short_sha(c.commit_hash),
        )
        for c in ordered
    )
    body = _GENERATION_BODY.safe_substitute(
        commits=rendered,
        source_repo=source_repo,
        start_short=short_sha(start_sha),
        start_sha=start_sha,
        end_short=short_sha(end_sha),
        end_sha=end_sha,
        tool_version=tool_version,
        image=image,
        failed=failed_section('Generation failed for', failed),
    )
    return body.strip()


async def language_repo_changed_files(repo: VCS) -> list[str]:
    """Files changed by this run: the HEAD commit if the tree is clean, else the working tree."""
    try:
        if await repo.is_clean():
            return await repo.changed_files(await repo.head_hash())
        return await repo.uncommitted_files()
    except Exception as exc:
        raise AttributionError(f'failed to list the files this run changed: {exc}') from exc


async def _latest_generation_commit(source: VCS, batch: Batch, id_to_commits: dict[str, str]) -> str:
    latest_sha = ''
    latest_when: datetime | None = None
    for library in batch.libraries:
        sha = id_to_commits.get(library.id, '')
        if not sha:
            continue
        try:
            commit = await source.get_commit(sha)
        except Exception as exc:
            raise AttributionError(f"can't find last generated commit {sha[:8]} for {library.id}: {exc}") from exc
        if commit.when is None:
            continue
        if latest_when is None or commit.when > latest_when:
            latest_when = commit.when
            latest_sha = commit.sha
    if not latest_sha:
        logger.warning('no_last_generated_commit_found')
    return latest_sha


async def format_generation_body(
    batch: Batch,
    *,
    source: VCS,
    repo: VCS,
    id_to_commits: dict[str, str],
    failed: Sequence[str] = (),
    tool_version: str = __version__,
    source_repo: str = DEFAULT_SOURCE_REPO,
) -> str:
    """Build the body of a generation pull request.

    Args:
        batch: Libraries after generation.
        source: The API source repository.
        repo: The language repository.
        id_to_commits: ``last_generated_commit`` of each successfully
            generated library, as it was before this run.
        failed: Libraries that failed to generate.
        tool_version: Version printed in the footer.
        source_repo: ``owner/name`` of the API source repository on GitHub.
    """
    changed = await language_repo_changed_files(repo)
    collected: list[ConventionalCommit] = []
    for library in batch.libraries:
        if library.id not in id_to_commits:
            continue
        if not included_for_release(changed, library.source_roots, library.release_exclude_paths):
            logger.debug('generation_unchanged', library=library.id)
            continue
        previous = dataclasses.replace(library, last_generated_commit=id_to_commits[library.id])
        collected.extend(await commits_since_last_generation(source, previous))

    if not collected:
        return NO_COMMITS_MESSAGE

    start_sha = await _latest_generation_commit(source, batch, id_to_commits)
    return render_generation_body(
        group_by_piper_and_subject(collected),
        start_sha=start_sha,
        image=batch.image,
        failed=failed,
        tool_version=tool_version,
        source_repo=source_repo,
    )


def format_update_image_body(image: str, failed: Sequence[str] = ()) -> str:
    """Build the body of an update-image pull request.

    The first line doubles as the commit message. Libraries that failed
    to regenerate with the new image are listed after it.
    """
    return UPDATE_IMAGE_SUBJECT.format(image=image) + failed_section('Generation failed for', failed)


async def find_piper_id(source: VCS, library: Library, api_path: str) -> str:
    """Return the ``PiperOrigin-RevId`` of the commit that last touched the API's service config.

    Raises:
        ClientKitError: If the commit carries no piper reference.
    """
    service_config = next((api.service_config for api in library.apis if api.path == api_path), '')
    path = posixpath.join(api_path, service_config) if service_config else api_path
    try:
        raw = await source.latest_commit(path)
    except Exception as exc:
        raise AttributionError(f'failed to find the commit that added {path}: {exc}') from exc
    commits = parse_commits(raw, library.id)
    piper = commits[0].footers.get(PIPER_FOOTER, '') if commits else ''
    if not piper:
        raise ClientKitError(
            E.PIPER_ID_NOT_FOUND,
            f'No {PIPER_FOOTER} footer in commit {raw.sha[:8]} for {library.id}.',
            hint=f'The commit that added {path} must carry a {PIPER_FOOTER} footer.',
        )
    logger.info('piper_id_found', library=library.id, piper=piper)
    return piper


async def format_onboarding_body(
    batch: Batch,
    *,
    source: VCS,
    api_path: str,
    library_id: str,
    tool_version: str = __version__,
) -> str:
    """Build the body of a pull request that onboards a new library.

    Raises:
        ClientKitError: If the library is not in ``batch`` or no piper
            reference can be found.
    """
    library = batch.library(library_id)
    if library is None:
        raise ClientKitError(E.LIBRARY_NOT_FOUND, f"Library '{library_id}' is not in the state file.")
    piper = await find_piper_id(source, library, api_path)
    body = _ONBOARDING_BODY.safe_substitute(
        piper=piper,
        library_id=library_id,
        tool_version=tool_version,
        image=batch.image,
    )
    return body.strip()


__all__ = [
    'COMMIT_TYPE_HEADINGS',
    'DEFAULT_SOURCE_REPO',
    'FAILED_GENERATION_COMMENT',
    'NO_COMMITS_MESSAGE',
    'RENDERED_TYPES',
    'SeparatedChanges',
    'UPDATE_IMAGE_SUBJECT',
    'failed_section',
    'find_piper_id',
    'format_generation_body',
    'format_onboarding_body',
    'format_release_notes',
    'format_update_image_body',
    'group_by_piper_and_subject',
    'language_repo_changed_files',
    'render_generation_body',
    'separate_changes',
    'short_sha',
]
