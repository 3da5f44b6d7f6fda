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

"""Tests for clientkit.cli: parser structure and argument validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from clientkit import __version__
from clientkit.cli import build_parser, main


class TestBuildParser:
    """Tests for the argument parser structure."""

    def test_generate_flags(self) -> None:
        """Generate accepts the source, onboarding and publishing flags."""
        args = build_parser().parse_args([
            'generate',
            '--api-source',
            '../googleapis',
            '--library',
            'secretmanager',
            '--api',
            'google/cloud/secretmanager/v1',
            '--build',
            '--push',
        ])
        assert args.command == 'generate'
        assert args.api_source == '../googleapis'
        assert args.library == 'secretmanager'
        assert args.api == 'google/cloud/secretmanager/v1'
        assert args.build and args.push
        assert not args.commit
        assert not args.generate_unchanged
        assert args.branch == 'main'

    def test_release_stage_flags(self) -> None:
        """Release-stage accepts an explicit library version."""
        args = build_parser().parse_args(['release-stage', '--library', 'pubsub', '--library-version', '2.0.0'])
        assert args.command == 'release-stage'
        assert args.library_version == '2.0.0'
        assert args.repo == '.'
        assert args.github_api_endpoint == 'https://api.github.com'

    def test_update_image_flags(self) -> None:
        """Update-image takes the new image, the API source and the publishing flags."""
        args = build_parser().parse_args([
            'update-image',
            '--api-source',
            '../googleapis',
            '--image',
            'gen:2.0.0',
            '--build',
            '--push',
        ])
        assert args.command == 'update-image'
        assert args.image == 'gen:2.0.0'
        assert args.api_source == '../googleapis'
        assert args.build and args.push
        assert args.library == ''

    def test_tag_and_release_flags(self) -> None:
        """Tag-and-release takes an optional pull request URL."""
        args = build_parser().parse_args(['tag-and-release', '--pr', 'https://github.com/o/r/pull/7'])
        assert args.pr == 'https://github.com/o/r/pull/7'

    def test_global_flags(self) -> None:
        """Logging flags sit before the subcommand."""
        args = build_parser().parse_args(['-v', '--json-log', 'explain', 'CK-STATE-NOT-FOUND'])
        assert args.verbose and args.json_log
        assert not args.quiet

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        """--version prints the package version."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--version'])
        assert __version__ in capsys.readouterr().out


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


class TestMain:
    """Tests for main() exit codes."""

    def test_no_command(self) -> None:
        """No subcommand prints help and exits 2."""
        assert main([]) == 2

    def test_explain_known(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Explaining a known code exits 0."""
        assert main(['explain', 'CK-BATCH-TOTAL-FAILURE']) == 0
        assert 'CK-BATCH-TOTAL-FAILURE' in capsys.readouterr().out

    def test_explain_unknown(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Explaining an unknown code exits 1."""
        assert main(['explain', 'CK-NOPE']) == 1
        assert 'Unknown error code' in capsys.readouterr().out

    def test_library_version_needs_library(self, tmp_path: Path) -> None:
        """--library-version alone is rejected before touching the repo."""
        code = main(['release-stage', '--repo', str(tmp_path), '--output', str(tmp_path / 'out'), '--library-version', '1.0.0'])
        assert code == 1

    def test_generate_needs_api_source(self, tmp_path: Path) -> None:
        """Generate without --api-source is rejected."""
        assert main(['generate', '--repo', str(tmp_path), '--output', str(tmp_path / 'out')]) == 1

    def test_update_image_needs_image(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Update-image without --image is rejected before touching the repo."""
        out = str(tmp_path / 'out')
        code = main(['update-image', '--repo', str(tmp_path), '--output', out, '--api-source', str(tmp_path)])
        assert code == 1
        assert '--image' in capsys.readouterr().err

    def test_update_image_needs_api_source(self, tmp_path: Path) -> None:
        """Update-image without --api-source is rejected."""
        out = str(tmp_path / 'out')
        assert main(['update-image', '--repo', str(tmp_path), '--output', out, '--image', 'gen:2']) == 1

    def test_missing_state(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A repository without state.yaml reports CK-STATE-NOT-FOUND."""
        code = main(['release-stage', '--repo', str(tmp_path), '--output', str(tmp_path / 'out')])
        assert code == 1
        assert 'CK-STATE-NOT-FOUND' in capsys.readouterr().err
