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

"""Batch pipeline: generate, update the image, stage releases, and open pull requests.

Libraries are processed one at a time. A failing library stops at the
phase that failed; the batch moves on to the next one.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ LibraryPhase        │ Where a library is in its run: configuring,   │
    │                     │ generating, building, or finished.            │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ LibraryProgress     │ The library's trail of phases. Once it is     │
    │                     │ UPDATED, SKIPPED or FAILED it cannot move.    │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ BatchOutcome        │ The scoreboard: which libraries succeeded,    │
    │                     │ failed (and in which phase), or were skipped. │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Total failure       │ Every library either failed or was skipped,   │
    │                     │ and at least one failed. Nothing is committed.│
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Partial failure     │ Some libraries failed. The run still commits  │
    │                     │ and lists them in the pull request body.      │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Restore             │ A failed build puts the library's files back  │
    │                     │ the way git has them.                         │
    └─────────────────────┴────────────────────────────────────────────────┘

Per-library phases (generate, update-image)::

    DECIDING ──skip──▶ SKIPPED
       │ generate
       ▼
    needs configure? ──yes──▶ CONFIGURING ─┐
         │ no                               │
         ▼                                  ▼
    GENERATING ──▶ BUILDING (optional) ──▶ UPDATED
         │               │
         ▼               ▼ (restore source roots)
       FAILED          FAILED

Per-library phases (release-stage)::

    STAGING ──▶ UPDATED | SKIPPED | FAILED

Every failure is recorded with the phase it happened in, so the
``failed`` list of a :class:`BatchOutcome` can say whether a library
broke while deciding, generating or building.

Usage::

    from clientkit.pipeline import PipelineOptions, run_generate

    result = await run_generate(
        batch=batch,
        config=config,
        options=PipelineOptions(repo_root=repo, work_root=work, api_source=source_dir),
        repo=GitCLIBackend(repo),
        source=GitCLIBackend(source_dir),
        container=DockerRunner(batch.image),
        forge=None,
    )
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import yaml

from clientkit.attribution import commits_since_last_release
from clientkit.backends._run import CommandResult
from clientkit.backends.container import ContainerRunner
from clientkit.backends.forge import Forge, repo_from_remote_url
from clientkit.backends.vcs import VCS
from clientkit.commits import LIBRARY_IDS_FOOTER, ConventionalCommit
from clientkit.config import ClientKitConfig
from clientkit.errors import E, ClientKitError, ContentHashLookupError, ExternalServiceError, TotalBatchFailure
from clientkit.files import clean_and_copy_library, copy_global_allowlist, copy_library_files, safe_directory_name
from clientkit.generation import should_generate
from clientkit.logging import get_logger, library_context
from clientkit.release_notes import (
    FAILED_GENERATION_COMMENT,
    UPDATE_IMAGE_SUBJECT,
    format_generation_body,
    format_onboarding_body,
    format_release_notes,
    format_update_image_body,
)
from clientkit.state import ApiState, Batch, Library, ReleaseNoteCommit, save_state, state_path
from clientkit.tags import determine_tag_format, format_tag
from clientkit.versioning import derive_next_version, max_version

logger = get_logger(__name__)

GENERATE_COMMIT_MESSAGE = 'feat: generate libraries'
RELEASE_COMMIT_MESSAGE = 'chore: create a release'
RELEASE_PENDING_LABEL = 'release:pending'
PR_BODY_FILE = 'pr-body.txt'
BRANCH_PREFIX = 'librarian-'
DEFAULT_LIBRARY_VERSION = '0.0.0'
STATUS_NEW = 'new'
STATUS_EXISTING = 'existing'
SERVICE_CONFIG_TYPE = 'google.api.Service'


class PullRequestType(str, Enum):
    """Kind of pull request a run opens."""

    ONBOARD = 'onboard'
    GENERATE = 'generate'
    RELEASE = 'release'
    UPDATE_IMAGE = 'update-image'


class LibraryPhase(str, Enum):
    """Phases of one library's run."""

    DECIDING = 'deciding'
    CONFIGURING = 'configuring'
    GENERATING = 'generating'
    BUILDING = 'building'
    STAGING = 'staging'
    UPDATED = 'updated'
    SKIPPED = 'skipped'
    FAILED = 'failed'


TERMINAL_PHASES: frozenset[LibraryPhase] = frozenset({LibraryPhase.UPDATED, LibraryPhase.SKIPPED, LibraryPhase.FAILED})


@dataclass
class LibraryProgress:
    """The phases one library has gone through, oldest first."""

    library_id: str
    history: list[LibraryPhase] = field(default_factory=list)

    @property
    def phase(self) -> LibraryPhase | None:
        """Current phase, or ``None`` before the first one."""
        return self.history[-1] if self.history else None

    @property
    def done(self) -> bool:
        """Whether the library reached a terminal phase."""
        return self.phase in TERMINAL_PHASES

    def enter(self, phase: LibraryPhase, **context: object) -> None:
        """Move to ``phase`` and log it.

        Raises:
            ValueError: If the library already finished.
        """
        current = self.phase
        if current is not None and current in TERMINAL_PHASES:
            msg = f'{self.library_id} is already {current.value}; cannot enter {phase.value}'
            raise ValueError(msg)
        self.history.append(phase)
        logger.info('library_phase', library=self.library_id, phase=phase.value, **context)

    def fail(self, exc: BaseException) -> LibraryPhase:
        """Record a failure in the current phase and return that phase."""
        failed_in = self.phase or LibraryPhase.DECIDING
        logger.error('library_failed', library=self.library_id, phase=failed_in.value, error=str(exc))
        self.enter(LibraryPhase.FAILED, failed_in=failed_in.value)
        return failed_in

    @property
    def failed_in(self) -> LibraryPhase | None:
        """The phase the library failed in, or ``None`` if it did not fail."""
        if self.phase is not LibraryPhase.FAILED:
            return None
        return self.history[-2] if len(self.history) > 1 else LibraryPhase.DECIDING


@dataclass(frozen=True)
class PipelineOptions:
    """Run-time settings for one pipeline run.

    Attributes:
        repo_root: Language repository checkout.
        work_root: Scratch directory for container output and ``pr-body.txt``.
        api_source: API source repository checkout.
        library: Only process this library.
        api: API path to onboard or regenerate.
        library_version: Explicit release version for ``library``.
        generate_unchanged: Regenerate even if no API changed.
        build: Build and test each library after generating it.
        commit: Commit the result.
        push: Push the result and open a pull request.
        branch: Base branch for the pull request.
    """

    repo_root: Path
    work_root: Path
    api_source: Path | None = None
    library: str = ''
    api: str = ''
    library_version: str = ''
    generate_unchanged: bool = False
    build: bool = False
    commit: bool = False
    push: bool = False
    branch: str = 'main'


@dataclass(frozen=True)
class BatchOutcome:
    """Per-library results of one batch loop.

    Attributes:
        succeeded: Libraries that completed every phase.
        failed: Libraries that errored, in processing order.
        skipped: Libraries that were blocked or had nothing to do.
        failed_phases: ``(library_id, phase)`` for each failed library.
    """

    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failed_phases: tuple[tuple[str, LibraryPhase], ...] = ()

    @classmethod
    def from_progress(cls, progress: Sequence[LibraryProgress]) -> BatchOutcome:
        """Tally finished libraries by their terminal phase."""
        succeeded = tuple(p.library_id for p in progress if p.phase is LibraryPhase.UPDATED)
        skipped = tuple(p.library_id for p in progress if p.phase is LibraryPhase.SKIPPED)
        failed = [p for p in progress if p.phase is LibraryPhase.FAILED]
        return cls(
            succeeded=succeeded,
            failed=tuple(p.library_id for p in failed),
            skipped=skipped,
            failed_phases=tuple((p.library_id, p.failed_in or LibraryPhase.DECIDING) for p in failed),
        )

    def failed_in(self, library_id: str) -> LibraryPhase | None:
        """The phase ``library_id`` failed in, or ``None``."""
        return dict(self.failed_phases).get(library_id)

    @property
    def total(self) -> int:
        """Number of libraries processed."""
        return len(self.succeeded) + len(self.failed) + len(self.skipped)

    @property
    def total_failure(self) -> bool:
        """At least one failure and nothing succeeded."""
        return bool(self.failed) and len(self.failed) + len(self.skipped) == self.total

    @property
    def partial_failure(self) -> bool:
        """Some libraries failed but the batch can still be committed."""
        return bool(self.failed) and not self.total_failure

    def raise_if_total_failure(self, action: str) -> None:
        """Raise :class:`TotalBatchFailure` if every library failed or was skipped."""
        if self.total_failure:
            raise TotalBatchFailure(
                f'all {len(self.failed)} libraries failed to {action} (skipped: {len(self.skipped)})',
                hint=f'Failed: {", ".join(self.failed)}',
            )


@dataclass
class PublishResult:
    """What :func:`commit_and_push` did.

    Attributes:
        branch: Branch the change was committed to, if any.
        pr_url: URL of the opened pull request, if any.
        pr_number: Number of the opened pull request, or ``0``.
        body_path: Where the pull request body was written instead.
    """

    branch: str = ''
    pr_url: str = ''
    pr_number: int = 0
    body_path: Path | None = None


@dataclass
class PipelineResult:
    """Outcome of :func:`run_generate`, :func:`run_release_stage` or :func:`run_update_image`."""

    outcome: BatchOutcome
    pr_type: PullRequestType
    publish: PublishResult = field(default_factory=PublishResult)


def timestamp(now: datetime | None = None) -> str:
    """UTC timestamp used in branch names and pull request titles."""
    return (now or datetime.now(tz=timezone.utc)).strftime('%Y%m%dT%H%M%SZ')


def pr_number_from_url(url: str) -> int:
    """Extract the pull request number from its URL.

    Raises:
        ExternalServiceError: If the URL does not end in a number.
    """
    try:
        return int(url.rstrip('/').rsplit('/', 1)[-1])
    except ValueError as exc:
        raise ExternalServiceError(f'cannot read a pull request number from {url!r}') from exc


def write_pr_body(work_root: Path, body: str) -> Path:
    """Write the pull request body that would have been used to ``work_root``."""
    path = work_root / PR_BODY_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body + '\n', encoding='utf-8')
    logger.info('pr_body_written', path=str(path))
    return path


def _check(result: CommandResult, what: str) -> None:
    if not result.ok:
        raise ExternalServiceError(f'failed to {what}: {result.error_summary}')


async def commit_and_push(
    *,
    repo: VCS,
    forge: Forge | None,
    options: PipelineOptions,
    message: str,
    pr_type: PullRequestType,
    body_builder: Callable[[], Awaitable[str]],
    labels: Sequence[str] = (),
    failed_count: int = 0,
    draft: bool = False,
) -> PublishResult:
    """Commit the working tree, push it and open a pull request.

    Without ``commit`` or ``push`` only ``pr-body.txt`` is written. The
    body is built after committing, so it can look at the new HEAD.

    Raises:
        ExternalServiceError: If any git or GitHub call fails.
    """
    if not options.commit and not options.push:
        logger.info('commit_skipped', reason='neither commit nor push requested')
        return PublishResult(body_path=write_pr_body(options.work_root, await body_builder()))

    added = await repo.add_all()
    _check(added, 'add all files to git')
    if await repo.is_clean():
        logger.info('nothing_to_commit')
        return PublishResult()

    ts = timestamp()
    branch = f'{BRANCH_PREFIX}{ts}'
    checked_out = await repo.checkout_branch(branch, create=True)
    _check(checked_out, f'create branch {branch}')
    committed = await repo.commit(message)
    _check(committed, 'commit')

    if not options.push:
        logger.info('push_skipped', branch=branch)
        return PublishResult(branch=branch, body_path=write_pr_body(options.work_root, await body_builder()))

    pushed = await repo.push(branch)
    _check(pushed, f'push {branch}')
    if forge is None:
        raise ExternalServiceError('cannot open a pull request without a GitHub client', hint='Set GITHUB_TOKEN.')

    title = f'chore: librarian {pr_type.value} pull request: {ts}'
    body = await body_builder()
    created = await forge.create_pr(title=title, body=body, head=branch, base=options.branch, draft=draft)
    _check(created, 'create pull request')
    url = created.stdout.strip()
    number = pr_number_from_url(url)
    logger.info('pull_request_created', url=url, number=number)

    if failed_count:
        commented = await forge.create_comment(number, FAILED_GENERATION_COMMENT)
        _check(commented, 'add pull request comment')
    if labels:
        labelled = await forge.add_labels(number, list(labels))
        _check(labelled, 'add labels to pull request')
    return PublishResult(branch=branch, pr_url=url, pr_number=number)


async def restore_library(repo: VCS, library: Library) -> None:
    """Put the library's source roots back to their committed state."""
    restored = await repo.restore(library.source_roots)
    cleaned = await repo.clean_untracked(library.source_roots)
    if not restored.ok or not cleaned.ok:
        logger.error(
            'library_restore_failed',
            library=library.id,
            stderr=restored.error_summary or cleaned.error_summary,
        )


def find_library_id_by_api_path(batch: Batch, api_path: str) -> str:
    """Return the ID of the library generated from ``api_path``, or empty string."""
    for library in batch.libraries:
        if api_path in library.api_paths:
            return library.id
    return ''


def needs_configure(batch: Batch, library_id: str, api_path: str) -> bool:
    """Whether onboarding ``api_path`` into ``library_id`` needs the configure step."""
    if not library_id or not api_path:
        return False
    library = batch.library(library_id)
    return library is None or api_path not in library.api_paths


def find_service_config(api_dir: Path) -> str:
    """Name of the service config YAML in ``api_dir``, or empty string.

    Raises:
        ClientKitError: If ``api_dir`` does not exist.
    """
    if not api_dir.is_dir():
        raise ClientKitError(
            E.API_PATH_NOT_FOUND,
            f'API path {api_dir} does not exist in the API source repository.',
        )
    for candidate in sorted(api_dir.glob('*.yaml')):
        try:
            data = yaml.safe_load(candidate.read_text(encoding='utf-8'))
        except yaml.YAMLError:
            logger.debug('service_config_candidate_invalid', path=str(candidate))
            continue
        if isinstance(data, dict) and data.get('type') == SERVICE_CONFIG_TYPE:
            return candidate.name
    return ''


def _add_api(batch: Batch, library_id: str, api_path: str) -> None:
    for library in batch.libraries:
        library.apis = [dataclasses.replace(api, status=STATUS_EXISTING) for api in library.apis]
    library = batch.library(library_id)
    if library is None:
        batch.libraries.append(Library(id=library_id, apis=[ApiState(path=api_path, status=STATUS_NEW)]))
    elif api_path not in library.api_paths:
        library.apis.append(ApiState(path=api_path, status=STATUS_NEW))


def _populate_service_configs(batch: Batch, api_root: Path) -> None:
    for library in batch.libraries:
        library.apis = [
            api if api.service_config else dataclasses.replace(api, service_config=find_service_config(api_root / api.path))
            for api in library.apis
        ]


async def configure_library(
    batch: Batch,
    config: ClientKitConfig,
    options: PipelineOptions,
    *,
    container: ContainerRunner,
    api_root: Path,
    output_root: Path,
    progress: LibraryProgress | None = None,
) -> Library:
    """Onboard ``options.api`` into ``options.library`` through the container."""
    _add_api(batch, options.library, options.api)
    _populate_service_configs(batch, api_root)
    library = batch.library(options.library)
    if library is None:
        raise ClientKitError(E.LIBRARY_NOT_FOUND, f"Library '{options.library}' could not be added to the state.")

    output = output_root / safe_directory_name(library.id) / 'configure'
    output.mkdir(parents=True, exist_ok=True)
    (progress or LibraryProgress(library.id)).enter(LibraryPhase.CONFIGURING)
    configured = await container.configure(
        options.repo_root,
        library,
        api_root=api_root,
        output=output,
        global_files=[f.path for f in config.global_files_allowlist],
    )
    if not configured.version:
        logger.info('library_version_defaulted', library=configured.id, version=DEFAULT_LIBRARY_VERSION)
        configured.version = DEFAULT_LIBRARY_VERSION
    batch.libraries = [configured if lib.id == configured.id else lib for lib in batch.libraries]

    copy_library_files(configured, output, options.repo_root)
    copy_global_allowlist(config, output, options.repo_root)
    return configured


async def generate_library(
    library: Library,
    options: PipelineOptions,
    *,
    repo: VCS,
    source: VCS,
    container: ContainerRunner,
    api_root: Path,
    output_root: Path,
    progress: LibraryProgress | None = None,
) -> None:
    """Generate, optionally build, and record the new ``last_generated_commit``.

    A failed build restores the library's source roots before the error
    propagates. A failed generation does not.

    Raises:
        ContentHashLookupError: If the API source HEAD cannot be read.
        ClientKitError: If a container command fails.
    """
    progress = progress or LibraryProgress(library.id)
    output = output_root / safe_directory_name(library.id)
    output.mkdir(parents=True, exist_ok=True)

    progress.enter(LibraryPhase.GENERATING, output=str(output))
    await container.generate(options.repo_root, library, api_root=api_root, output=output)
    clean_and_copy_library(options.repo_root, library, output)

    if options.build:
        progress.enter(LibraryPhase.BUILDING)
        try:
            await container.build(options.repo_root, library)
        except ClientKitError:
            await restore_library(repo, library)
            raise

    try:
        head = await source.head_hash()
    except Exception as exc:
        raise ContentHashLookupError(f'failed to get head hash of the API source repository: {exc}') from exc
    library.last_generated_commit = head
    progress.enter(LibraryPhase.UPDATED, commit=head[:8])


def _log_statistics(total: int, outcome: BatchOutcome) -> None:
    logger.info(
        'generation_statistics',
        all=total,
        successes=len(outcome.succeeded),
        skipped=len(outcome.skipped),
        failures=len(outcome.failed),
    )


async def _generate_batch(
    batch: Batch,
    config: ClientKitConfig,
    options: PipelineOptions,
    *,
    repo: VCS,
    source: VCS,
    container: ContainerRunner,
    api_root: Path,
    output_root: Path,
) -> tuple[BatchOutcome, dict[str, str]]:
    records: list[LibraryProgress] = []
    id_to_commits: dict[str, str] = {}
    for library in batch.libraries:
        progress = LibraryProgress(library.id)
        records.append(progress)
        with library_context(library.id):
            progress.enter(LibraryPhase.DECIDING)
            try:
                decision = await should_generate(
                    library,
                    source,
                    config=config,
                    generate_unchanged=options.generate_unchanged,
                )
            except ClientKitError as exc:
                progress.fail(exc)
                continue
            if not decision.generate:
                progress.enter(LibraryPhase.SKIPPED, reason=decision.reason)
                continue

            old_commit = library.last_generated_commit
            try:
                await generate_library(
                    library,
                    options,
                    repo=repo,
                    source=source,
                    container=container,
                    api_root=api_root,
                    output_root=output_root,
                    progress=progress,
                )
            except Exception as exc:  # noqa: BLE001
                progress.fail(exc)
                continue
            id_to_commits[library.id] = old_commit

    outcome = BatchOutcome.from_progress(records)
    _log_statistics(len(batch.libraries), outcome)
    return outcome, id_to_commits


async def run_generate(
    *,
    batch: Batch,
    config: ClientKitConfig,
    options: PipelineOptions,
    repo: VCS,
    source: VCS,
    container: ContainerRunner,
    forge: Forge | None,
) -> PipelineResult:
    """Run the generate command.

    With ``options.library`` or ``options.api`` only that library is
    handled, and any error stops the run. Otherwise every library is
    checked with :func:`~clientkit.generation.should_generate`, and
    failures are isolated per library.

    Raises:
        TotalBatchFailure: If every library failed or was skipped.
        ExternalServiceError: If committing, pushing or opening the pull
            request fails.
    """
    if options.api_source is None:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, 'generate needs the API source repository.', hint='Pass --api-source.')
    api_root = options.api_source.resolve()
    output_root = options.work_root / 'output'
    output_root.mkdir(parents=True, exist_ok=True)

    pr_type = PullRequestType.GENERATE
    if options.library or options.api:
        library_id = options.library or find_library_id_by_api_path(batch, options.api)
        progress = LibraryProgress(library_id or options.api)
        if needs_configure(batch, options.library, options.api):
            configured = await configure_library(
                batch,
                config,
                options,
                container=container,
                api_root=api_root,
                output_root=output_root,
                progress=progress,
            )
            library_id = configured.id
            pr_type = PullRequestType.ONBOARD
        library = batch.library(library_id)
        if library is None:
            raise ClientKitError(
                E.LIBRARY_NOT_FOUND,
                f"Library '{library_id or options.api}' is not configured yet; generation stopped.",
                hint='Pass both --library and --api to onboard a new library.',
            )
        old_commit = library.last_generated_commit
        if library.apis:
            with library_context(library.id):
                await generate_library(
                    library,
                    options,
                    repo=repo,
                    source=source,
                    container=container,
                    api_root=api_root,
                    output_root=output_root,
                    progress=progress,
                )
        else:
            logger.info('library_skipped', library=library.id, reason='no_apis')
            old_commit = ''
        id_to_commits = {library.id: old_commit}
        outcome = BatchOutcome(succeeded=(library.id,))
    else:
        outcome, id_to_commits = await _generate_batch(
            batch,
            config,
            options,
            repo=repo,
            source=source,
            container=container,
            api_root=api_root,
            output_root=output_root,
        )
        outcome.raise_if_total_failure('generate')
    if outcome.partial_failure:
        logger.warning('partial_batch_failure', failed=list(outcome.failed))

    save_state(state_path(options.repo_root), batch)

    async def build_body() -> str:
        if pr_type is PullRequestType.ONBOARD:
            return await format_onboarding_body(batch, source=source, api_path=options.api, library_id=options.library)
        return await format_generation_body(
            batch,
            source=source,
            repo=repo,
            id_to_commits=id_to_commits,
            failed=outcome.failed,
        )

    publish = await commit_and_push(
        repo=repo,
        forge=forge,
        options=options,
        message=GENERATE_COMMIT_MESSAGE,
        pr_type=pr_type,
        body_builder=build_body,
        failed_count=len(outcome.failed),
    )
    return PipelineResult(outcome=outcome, pr_type=pr_type, publish=publish)


def to_release_note_commits(commits: Sequence[ConventionalCommit], library_id: str) -> list[ReleaseNoteCommit]:
    """Flatten parsed commits into the form stored in the state file."""
    return [
        ReleaseNoteCommit(
            type=c.type,
            subject=c.subject,
            body=c.body,
            commit_hash=c.commit_hash,
            piper_cl_number=c.piper_cl_number,
            library_ids=c.footers.get(LIBRARY_IDS_FOOTER) or library_id,
        )
        for c in commits
    ]


async def stage_library(
    library: Library,
    *,
    repo: VCS,
    config: ClientKitConfig,
    version_override: str = '',
    requested: bool = False,
) -> bool:
    """Work out the next version of ``library`` and record its pending release.

    Returns:
        ``True`` if a release was triggered.

    Raises:
        ClientKitError: ``CK-VERSION-OVERRIDE-INVALID`` if the override is
            not newer than the current version, or ``CK-VERSION-NOT-BUMPED``
            if ``requested`` and nothing is releasable.
    """
    tag = ''
    if library.version != DEFAULT_LIBRARY_VERSION:
        tag = format_tag(determine_tag_format(library, config), library.id, library.version)
    commits = await commits_since_last_release(repo, library, tag)

    if version_override:
        next_version = max_version(library.version, version_override)
        if next_version == library.version:
            raise ClientKitError(
                E.VERSION_OVERRIDE_INVALID,
                f"Version {version_override} is not greater than {library.id}'s current version {library.version}.",
                hint=f'Pass a version newer than {library.version}.',
            )
    else:
        next_version = derive_next_version(commits, library.version)
        lib_cfg = config.library_config(library.id)
        if lib_cfg is not None and lib_cfg.next_version:
            next_version = max_version(next_version, lib_cfg.next_version)
        if next_version == library.version:
            if requested:
                raise ClientKitError(
                    E.VERSION_NOT_BUMPED,
                    f"Library '{library.id}' has no releasable changes since {tag or 'its first commit'}.",
                    hint='Pass --library-version to force a release.',
                )
            logger.info('library_skipped', library=library.id, reason='no_releasable_changes', version=library.version)
            return False

    logger.info('library_staged', library=library.id, current=library.version, next=next_version, commits=len(commits))
    library.previous_version = library.version
    library.changes = to_release_note_commits(commits, library.id)
    library.version = next_version
    library.release_triggered = True
    return True


async def _stage_batch(
    libraries: list[Library],
    *,
    repo: VCS,
    config: ClientKitConfig,
    options: PipelineOptions,
) -> BatchOutcome:
    records: list[LibraryProgress] = []
    for library in libraries:
        progress = LibraryProgress(library.id)
        records.append(progress)
        requested = options.library == library.id
        lib_cfg = config.library_config(library.id)
        if lib_cfg is not None and lib_cfg.release_blocked and not requested:
            progress.enter(LibraryPhase.SKIPPED, reason='release_blocked')
            continue
        with library_context(library.id):
            progress.enter(LibraryPhase.STAGING)
            if requested:
                triggered = await stage_library(
                    library, repo=repo, config=config, version_override=options.library_version, requested=True
                )
            else:
                try:
                    triggered = await stage_library(library, repo=repo, config=config)
                except Exception as exc:  # noqa: BLE001
                    progress.fail(exc)
                    continue
            progress.enter(LibraryPhase.UPDATED if triggered else LibraryPhase.SKIPPED)
    return BatchOutcome.from_progress(records)


async def _github_repo(repo: VCS, forge: Forge | None) -> tuple[str, str]:
    if forge is not None:
        return forge.owner, forge.repo
    url = await repo.remote_url()
    try:
        return repo_from_remote_url(url)
    except ValueError as exc:
        raise ExternalServiceError(f'cannot determine the GitHub repository from remote {url!r}') from exc


async def run_release_stage(
    *,
    batch: Batch,
    config: ClientKitConfig,
    options: PipelineOptions,
    repo: VCS,
    container: ContainerRunner,
    forge: Forge | None,
) -> PipelineResult:
    """Run the release-stage command.

    Raises:
        ClientKitError: If ``options.library`` is unknown, or staging it
            fails.
        TotalBatchFailure: If every library failed or was skipped.
        ExternalServiceError: If committing or opening the pull request fails.
    """
    libraries = batch.libraries
    if options.library:
        library = batch.library(options.library)
        if library is None:
            raise ClientKitError(E.LIBRARY_NOT_FOUND, f"Unable to find library for release: '{options.library}'.")
        libraries = [library]

    # 1. Work out versions and pending changes.
    outcome = await _stage_batch(libraries, repo=repo, config=config, options=options)
    outcome.raise_if_total_failure('stage a release')
    triggered = batch.triggered()
    if not triggered:
        logger.info('no_release_triggered')
        return PipelineResult(outcome=outcome, pr_type=PullRequestType.RELEASE)

    # 2. Let the container apply versions and changelogs.
    output = options.work_root / 'output'
    output.mkdir(parents=True, exist_ok=True)
    await container.release_stage(options.repo_root, batch, output=output)
    for library in triggered:
        copy_library_files(library, output, options.repo_root)
    copy_global_allowlist(config, output, options.repo_root)

    # 3. Persist and publish.
    save_state(state_path(options.repo_root), batch)

    async def build_body() -> str:
        owner, name = await _github_repo(repo, forge)
        return format_release_notes(batch, owner=owner, repo=name, config=config, failed=outcome.failed)

    publish = await commit_and_push(
        repo=repo,
        forge=forge,
        options=options,
        message=RELEASE_COMMIT_MESSAGE,
        pr_type=PullRequestType.RELEASE,
        body_builder=build_body,
        labels=[RELEASE_PENDING_LABEL],
    )
    return PipelineResult(outcome=outcome, pr_type=PullRequestType.RELEASE, publish=publish)


async def _regenerate_at_last_commit(
    library: Library,
    options: PipelineOptions,
    *,
    repo: VCS,
    source: VCS,
    container: ContainerRunner,
    api_root: Path,
    output_root: Path,
    progress: LibraryProgress,
    source_head: str,
) -> None:
    sha = library.last_generated_commit or source_head
    checked_out = await source.checkout_commit(sha)
    if not checked_out.ok:
        raise ExternalServiceError(
            f'failed to check out {sha[:8]} in the API source repository: {checked_out.error_summary}',
        )
    await generate_library(
        library,
        options,
        repo=repo,
        source=source,
        container=container,
        api_root=api_root,
        output_root=output_root,
        progress=progress,
    )


async def run_update_image(
    *,
    batch: Batch,
    config: ClientKitConfig,
    options: PipelineOptions,
    image: str,
    repo: VCS,
    source: VCS,
    container: ContainerRunner,
    forge: Forge | None,
) -> PipelineResult:
    """Run the update-image command.

    Records ``image`` in the state file and regenerates every library
    with it, each at its own ``last_generated_commit`` so that only the
    generator changes. The API source checkout is put back on its
    original HEAD afterwards. Libraries that fail are listed in the pull
    request body, and the pull request is opened as a draft.
    With ``options.library`` only that library is regenerated.

    Raises:
        ClientKitError: If ``options.library`` is unknown.
        ContentHashLookupError: If the API source HEAD cannot be read.
        TotalBatchFailure: If every library failed or was skipped.
        ExternalServiceError: If committing, pushing or opening the pull
            request fails.
    """
    if options.api_source is None:
        raise ClientKitError(
            E.CONFIG_INVALID_VALUE,
            'update-image needs the API source repository.',
            hint='Pass --api-source.',
        )
    if not image:
        raise ClientKitError(
            E.CONFIG_INVALID_VALUE,
            'update-image needs the new container image.',
            hint='Pass --image.',
        )
    libraries = batch.libraries
    if options.library:
        library = batch.library(options.library)
        if library is None:
            raise ClientKitError(E.LIBRARY_NOT_FOUND, f"Library '{options.library}' is not in the state file.")
        libraries = [library]
    if image == batch.image:
        logger.info('image_unchanged', image=image)
    batch.image = image

    api_root = options.api_source.resolve()
    output_root = options.work_root / 'output'
    output_root.mkdir(parents=True, exist_ok=True)
    try:
        source_head = await source.head_hash()
    except Exception as exc:
        raise ContentHashLookupError(f'failed to get head hash of the API source repository: {exc}') from exc

    records: list[LibraryProgress] = []
    try:
        for library in libraries:
            progress = LibraryProgress(library.id)
            records.append(progress)
            with library_context(library.id):
                progress.enter(LibraryPhase.DECIDING)
                lib_cfg = config.library_config(library.id)
                if lib_cfg is not None and lib_cfg.generate_blocked:
                    progress.enter(LibraryPhase.SKIPPED, reason='generate_blocked')
                    continue
                if not library.apis:
                    progress.enter(LibraryPhase.UPDATED, reason='no_apis')
                    continue
                try:
                    await _regenerate_at_last_commit(
                        library,
                        options,
                        repo=repo,
                        source=source,
                        container=container,
                        api_root=api_root,
                        output_root=output_root,
                        progress=progress,
                        source_head=source_head,
                    )
                except Exception as exc:  # noqa: BLE001
                    progress.fail(exc)
    finally:
        restored = await source.checkout_commit(source_head)
        if not restored.ok:
            logger.error('source_restore_failed', head=source_head[:8], stderr=restored.error_summary)

    outcome = BatchOutcome.from_progress(records)
    _log_statistics(len(libraries), outcome)
    outcome.raise_if_total_failure('regenerate with the new image')
    if outcome.partial_failure:
        logger.warning('partial_batch_failure', failed=list(outcome.failed))
    save_state(state_path(options.repo_root), batch)

    async def build_body() -> str:
        return format_update_image_body(image, outcome.failed)

    publish = await commit_and_push(
        repo=repo,
        forge=forge,
        options=options,
        message=UPDATE_IMAGE_SUBJECT.format(image=image),
        pr_type=PullRequestType.UPDATE_IMAGE,
        body_builder=build_body,
        failed_count=len(outcome.failed),
        draft=bool(outcome.failed),
    )
    return PipelineResult(outcome=outcome, pr_type=PullRequestType.UPDATE_IMAGE, publish=publish)


__all__ = [
    'BRANCH_PREFIX',
    'BatchOutcome',
    'DEFAULT_LIBRARY_VERSION',
    'GENERATE_COMMIT_MESSAGE',
    'LibraryPhase',
    'LibraryProgress',
    'PR_BODY_FILE',
    'PipelineOptions',
    'PipelineResult',
    'PublishResult',
    'PullRequestType',
    'RELEASE_COMMIT_MESSAGE',
    'RELEASE_PENDING_LABEL',
    'TERMINAL_PHASES',
    'commit_and_push',
    'configure_library',
    'find_library_id_by_api_path',
    'find_service_config',
    'generate_library',
    'needs_configure',
    'pr_number_from_url',
    'run_generate',
    'run_release_stage',
    'run_update_image',
    'stage_library',
    'timestamp',
    'to_release_note_commits',
    'write_pr_body',
]
