"""Tests for the acceptance harness."""

import json
import tempfile
import unittest
from pathlib import Path

from helpers import FakeRunner, RecordingSDKBuildpack

from webops_buildpacks.acceptance import AcceptanceCase, AcceptanceRunner
from webops_buildpacks.buildpacks.dotnet import DotNetSDKBuildpack
from webops_buildpacks.buildpacks.nodejs import NPMBuildpack


class TestAcceptanceCase(unittest.TestCase):
    """Test cases for acceptance case definitions."""

    def test_environ(self) -> None:
        """Test parsing KEY=VALUE entries into an environment."""
        case = AcceptanceCase('app', env=['WEBOPS_DEVMODE=true', 'EXTRA=a=b'])
        self.assertEqual(case.environ(), {'WEBOPS_DEVMODE': 'true', 'EXTRA': 'a=b'})
        self.assertEqual(case.title, 'app')

    def test_invalid_env_entry(self) -> None:
        """Test that an entry without = is rejected."""
        with self.assertRaises(ValueError):
            AcceptanceCase('app', env=['WEBOPS_DEVMODE']).environ()


class TestAcceptanceRunner(unittest.TestCase):
    """Test cases for running acceptance cases against fixture apps."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.fixtures = Path(self.temp_dir.name)
        (self.fixtures / 'sdk_app').mkdir()
        (self.fixtures / 'sdk_app' / 'app.csproj').write_text('<Project />')

        npm_app = self.fixtures / 'npm_app'
        npm_app.mkdir()
        (npm_app / 'package.json').write_text(json.dumps({'name': 'app'}))
        (npm_app / 'package-lock.json').write_text(json.dumps({'lockfileVersion': 2}))

        strict_app = self.fixtures / 'npm_strict_app'
        strict_app.mkdir()
        (strict_app / 'package.json').write_text(json.dumps({'engines': {'npm': '9.0.0'}}))

    def tearDown(self) -> None:
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    def npm_runner(self, npm_version: str) -> AcceptanceRunner:
        return AcceptanceRunner(
            self.fixtures,
            lambda: [NPMBuildpack()],
            runner=FakeRunner(outputs={'npm --version': f'{npm_version}\n'}),
        )

    def test_cache_test_passes_on_second_hit(self) -> None:
        """Test cache test passes on second hit."""
        runner = AcceptanceRunner(self.fixtures, lambda: [RecordingSDKBuildpack('3.1.0')])

        result = runner.run(AcceptanceCase('sdk_app', enable_cache_test=True))

        self.assertTrue(result.passed, result.failures)
        self.assertIn("Cache hit for layer 'sdk'", result.output)

    def test_must_output(self) -> None:
        """Test required and forbidden output checks."""
        result = self.npm_runner('8.3.1').run(AcceptanceCase(
            'npm_app',
            must_output=["Running 'npm ci --quiet'"],
            must_not_output=['does not support pruning'],
        ))
        self.assertTrue(result.passed, result.failures)

    def test_old_npm_output(self) -> None:
        """Test the pruning warning of an old npm."""
        result = self.npm_runner('5.0.1').run(AcceptanceCase(
            'npm_app', must_output=['WARNING: npm 5.0.1 does not support pruning'],
        ))
        self.assertTrue(result.passed, result.failures)

    def test_must_fail_matches_error(self) -> None:
        """Test must fail matches error."""
        result = self.npm_runner('8.3.1').run(AcceptanceCase(
            'npm_strict_app', must_fail=True, must_match=r'^Capability mismatch:',
        ))
        self.assertTrue(result.passed, result.failures)

    def test_must_fail_with_wrong_pattern(self) -> None:
        """Test must fail with wrong pattern."""
        result = self.npm_runner('8.3.1').run(AcceptanceCase(
            'npm_strict_app', must_fail=True, must_match=r'^Dependency conflict',
        ))
        self.assertFalse(result.passed)
        self.assertEqual(result.failures, ["output does not match '^Dependency conflict'"])

    def test_unexpected_success_is_reported(self) -> None:
        """Test unexpected success is reported."""
        result = self.npm_runner('8.3.1').run(AcceptanceCase('npm_app', must_fail=True))
        self.assertFalse(result.passed)
        self.assertIn('build succeeded, want failure', result.failures)

    def test_forced_runtime_opt_out(self) -> None:
        """Test that a forced runtime opt-out reason appears in the output."""
        runner = AcceptanceRunner(self.fixtures, lambda: [DotNetSDKBuildpack()])
        result = runner.run(AcceptanceCase(
            'sdk_app',
            name='forced nodejs',
            env=['WEBOPS_RUNTIME=nodejs'],
            must_fail=True,
            must_output=['dotnet-sdk: opted out: WEBOPS_RUNTIME is set to "nodejs", not "dotnet"'],
        ))
        self.assertTrue(result.passed, result.failures)
