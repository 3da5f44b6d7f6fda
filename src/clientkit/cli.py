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

"""CLI entry point for clientkit.

Constructs backend instances and injects them into the pipeline modules.

Subcommands::

    clientkit generate         Regenerate libraries whose APIs changed
    clientkit update-image     Regenerate every library with a new container image
    clientkit release-stage    Stage releases and open a release pull request
    clientkit tag-and-release  Tag merged release pull requests and publish releases
    clientkit explain          Explain an error code

Usage::

    # Regenerate everything that changed, commit, and open a pull request:
    clientkit generate --repo . --api-source ../googleapis --push

    # Onboard a new library:
    clientkit generate --repo . --api-source ../googleapis \\
        --library secretmanager --api google/cloud/secretmanager/v1

    # Move every library to a new generator image (draft PR if any fail):
    clientkit update-image --repo . --api-source ../googleapis \\
        --image us-central1-docker.pkg.dev/cloud-sdk/images/go-generator:2.0.0 --push

    # Stage a release of one library at an explicit version:
    clientkit release-stage --repo . --library pubsub --library-version 2.0.0

    # Explain an error:
    clientkit explain CK-BATCH-TOTAL-FAILURE
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from rich_argparse import RichHelpFormatter

from clientkit import __version__
from clientkit.backends.container import DockerRunner
from clientkit.backends.forge import Forge, GitHubAPIBackend, repo_from_remote_url
from clientkit.backends.vcs import GitCLIBackend
from clientkit.config import CONFIG_FILENAME, load_config
from clientkit.errors import E, ClientKitError, explain, render_error
from clientkit.lock import run_lock
from clientkit.logging import bind_command, configure_logging, get_logger
from clientkit.pipeline import PipelineOptions, PipelineResult, run_generate, run_release_stage, run_update_image
from clientkit.release import tag_and_release
from clientkit.state import LIBRARIAN_DIR, load_state, state_path

logger = get_logger(__name__)

_DEFAULT_API_ENDPOINT = 'https://api.github.com'


def _work_root(args: argparse.Namespace) -> Path:
    if args.output:
        return Path(args.output).resolve()
    stamp = datetime.now(tz=timezone.utc).strftime('%Y%m%dT%H%M%SZ')
    return Path(tempfile.mkdtemp(prefix=f'clientkit-{stamp}-'))


def _options(args: argparse.Namespace) -> PipelineOptions:
    return PipelineOptions(
        repo_root=Path(args.repo).resolve(),
        work_root=_work_root(args),
        api_source=Path(args.api_source).resolve() if getattr(args, 'api_source', '') else None,
        library=args.library,
        api=getattr(args, 'api', ''),
        library_version=getattr(args, 'library_version', ''),
        generate_unchanged=getattr(args, 'generate_unchanged', False),
        build=getattr(args, 'build', False),
        commit=args.commit,
        push=args.push,
        branch=args.branch,
    )


def _github_token() -> str:
    return os.environ.get('GITHUB_TOKEN', '') or os.environ.get('GH_TOKEN', '')


async def _github_backend(repo: GitCLIBackend, endpoint: str) -> GitHubAPIBackend:
    """Build a GitHub client for the repository's ``origin`` remote."""
    token = _github_token()
    if not token:
        raise ClientKitError(
            E.CONFIG_INVALID_VALUE,
            'A GitHub token is required for this command.',
            hint='Set GITHUB_TOKEN or GH_TOKEN.',
        )
    url = await repo.remote_url()
    try:
        owner, name = repo_from_remote_url(url)
    except ValueError as exc:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, f'Remote origin {url!r} is not a GitHub repository.') from exc
    return GitHubAPIBackend(owner, name, token=token, base_url=endpoint)


async def _create_forge(repo: GitCLIBackend, endpoint: str, *, required: bool) -> Forge | None:
    """Return a GitHub client, or ``None`` if no token is set and none is required."""
    if not required and not _github_token():
        return None
    return await _github_backend(repo, endpoint)


def _report(result: PipelineResult) -> int:
    outcome = result.outcome
    logger.info(
        'run_complete',
        pr_type=result.pr_type.value,
        succeeded=len(outcome.succeeded),
        failed=len(outcome.failed),
        skipped=len(outcome.skipped),
        pr_url=result.publish.pr_url,
    )
    if result.publish.pr_url:
        print(f'Pull request: {result.publish.pr_url}')  # noqa: T201 - CLI output
    elif result.publish.body_path is not None:
        print(f'Pull request body: {result.publish.body_path}')  # noqa: T201 - CLI output
    return 0


async def _cmd_generate(args: argparse.Namespace) -> int:
    """Handle the ``generate`` subcommand."""
    options = _options(args)
    if options.api_source is None:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, 'generate needs --api-source.')
    with run_lock(options.repo_root):
        batch = load_state(state_path(options.repo_root))
        config = load_config(options.repo_root / LIBRARIAN_DIR / CONFIG_FILENAME)
        repo = GitCLIBackend(options.repo_root)
        forge = await _create_forge(repo, args.github_api_endpoint, required=options.push)
        result = await run_generate(
            batch=batch,
            config=config,
            options=options,
            repo=repo,
            source=GitCLIBackend(options.api_source),
            container=DockerRunner(args.image or batch.image, host_mount=args.host_mount),
            forge=forge,
        )
    return _report(result)


async def _cmd_update_image(args: argparse.Namespace) -> int:
    """Handle the ``update-image`` subcommand."""
    options = _options(args)
    if options.api_source is None:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, 'update-image needs --api-source.')
    if not args.image:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, 'update-image needs --image.')
    with run_lock(options.repo_root):
        batch = load_state(state_path(options.repo_root))
        config = load_config(options.repo_root / LIBRARIAN_DIR / CONFIG_FILENAME)
        repo = GitCLIBackend(options.repo_root)
        forge = await _create_forge(repo, args.github_api_endpoint, required=options.push)
        result = await run_update_image(
            batch=batch,
            config=config,
            options=options,
            image=args.image,
            repo=repo,
            source=GitCLIBackend(options.api_source),
            container=DockerRunner(args.image, host_mount=args.host_mount),
            forge=forge,
        )
    return _report(result)


async def _cmd_release_stage(args: argparse.Namespace) -> int:
    """Handle the ``release-stage`` subcommand."""
    options = _options(args)
    if options.library_version and not options.library:
        raise ClientKitError(E.CONFIG_INVALID_VALUE, '--library-version requires --library.')
    with run_lock(options.repo_root):
        batch = load_state(state_path(options.repo_root))
        config = load_config(options.repo_root / LIBRARIAN_DIR / CONFIG_FILENAME)
        repo = GitCLIBackend(options.repo_root)
        forge = await _create_forge(repo, args.github_api_endpoint, required=options.push)
        result = await run_release_stage(
            batch=batch,
            config=config,
            options=options,
            repo=repo,
            container=DockerRunner(args.image or batch.image, host_mount=args.host_mount),
            forge=forge,
        )
    return _report(result)


async def _cmd_tag_and_release(args: argparse.Namespace) -> int:
    """Handle the ``tag-and-release`` subcommand."""
    repo = GitCLIBackend(Path(args.repo).resolve())
    forge = await _github_backend(repo, args.github_api_endpoint)
    result = await tag_and_release(forge=forge, pull_request=args.pr)
    logger.info('tag_and_release_complete', processed=len(result.processed), releases=len(result.releases_created))
    return 0


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        return 1
    print(result)  # noqa: T201 - CLI output
    return 0


def _add_repo_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--repo', default='.', help='Language repository checkout (default: current directory).')
    parser.add_argument(
        '--github-api-endpoint',
        default=_DEFAULT_API_ENDPOINT,
        help='GitHub API base URL (override for GitHub Enterprise).',
    )


def _add_pipeline_flags(
    parser: argparse.ArgumentParser,
    *,
    image_help: str = 'Language container image (default: image from state.yaml).',
) -> None:
    _add_repo_flags(parser)
    parser.add_argument('--library', default='', help='Only process this library.')
    parser.add_argument('--image', default='', help=image_help)
    parser.add_argument('--host-mount', default='', help='host:local prefix mapping for docker-in-docker.')
    parser.add_argument('--output', default='', help='Working directory for container output and pr-body.txt.')
    parser.add_argument('--branch', default='main', help='Base branch for the pull request.')
    parser.add_argument('--commit', action='store_true', help='Commit the changes to a new branch.')
    parser.add_argument('--push', action='store_true', help='Push the branch and open a pull request.')


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured :class:`argparse.ArgumentParser`.
    """
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='clientkit',
        description='Commit classification and release orchestration for generated client libraries.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only log warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Emit JSON log lines.')

    subparsers = parser.add_subparsers(dest='command')

    generate_parser = subparsers.add_parser(
        'generate',
        help='Regenerate libraries whose APIs changed, or onboard a new one.',
        formatter_class=RichHelpFormatter,
    )
    _add_pipeline_flags(generate_parser)
    generate_parser.add_argument('--api-source', default='', help='API source repository checkout.')
    generate_parser.add_argument('--api', default='', help='API path to generate or onboard.')
    generate_parser.add_argument('--build', action='store_true', help='Build and test each generated library.')
    generate_parser.add_argument(
        '--generate-unchanged',
        action='store_true',
        help='Regenerate libraries even if their APIs did not change.',
    )

    update_parser = subparsers.add_parser(
        'update-image',
        help='Regenerate every library with a new container image.',
        formatter_class=RichHelpFormatter,
    )
    _add_pipeline_flags(update_parser, image_help='New language container image (required).')
    update_parser.add_argument('--api-source', default='', help='API source repository checkout.')
    update_parser.add_argument('--build', action='store_true', help='Build and test each regenerated library.')

    stage_parser = subparsers.add_parser(
        'release-stage',
        help='Work out next versions and open a release pull request.',
        formatter_class=RichHelpFormatter,
    )
    _add_pipeline_flags(stage_parser)
    stage_parser.add_argument('--library-version', default='', help='Explicit version for --library.')

    tag_parser = subparsers.add_parser(
        'tag-and-release',
        help='Tag merged release pull requests and create GitHub releases.',
        formatter_class=RichHelpFormatter,
    )
    _add_repo_flags(tag_parser)
    tag_parser.add_argument('--pr', default='', help='URL of a single release pull request to process.')

    explain_parser = subparsers.add_parser('explain', help='Explain an error code.')
    explain_parser.add_argument('code', help='Error code to explain (e.g., CK-BATCH-TOTAL-FAILURE).')

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)
    if args.command:
        bind_command(args.command)

    try:
        command = args.command
        if command == 'generate':
            return asyncio.run(_cmd_generate(args))
        if command == 'update-image':
            return asyncio.run(_cmd_update_image(args))
        if command == 'release-stage':
            return asyncio.run(_cmd_release_stage(args))
        if command == 'tag-and-release':
            return asyncio.run(_cmd_tag_and_release(args))
        if command == 'explain':
            return _cmd_explain(args)

        parser.print_help()  # noqa: T201 - CLI output
        print(  # noqa: T201 - CLI output
            f'\n{parser.prog}: error: please provide a command',
            file=sys.stderr,
        )
        return 2

    except ClientKitError as exc:
        render_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.info('interrupted')
        return 130


def _main() -> None:
    """Wrapper for pyproject.toml [project.scripts] entry point."""
    sys.exit(main())


__all__ = [
    'build_parser',
    'main',
]
