"""In-process acceptance harness.

Runs the phase controller against a fixture application with a given
environment and checks the outcome only through the build result and
the build output, the way an end-to-end harness would.
"""

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .buildpacks.base import Buildpack
from .config import BuildConfig
from .errors import matches_failure
from .lifecycle import BuildReport, PhaseController, Runner
from .output import BuildOutput


@dataclass
class AcceptanceCase:
    """A single acceptance scenario."""
    app: str
    name: str = ""
    env: List[str] = field(default_factory=list)
    must_output: List[str] = field(default_factory=list)
    must_not_output: List[str] = field(default_factory=list)
    must_fail: bool = False
    must_match: str = ""
    enable_cache_test: bool = False

    @property
    def title(self) -> str:
        return self.name or self.app

    def environ(self) -> dict:
        environ = {}
        for item in self.env:
            key, sep, value = item.partition("=")
            if not sep:
                raise ValueError(f"environment entry {item!r} must be KEY=VALUE")
            environ[key] = value
        return environ


@dataclass
class AcceptanceResult:
    case: AcceptanceCase
    passed: bool
    failures: List[str]
    output: str
    report: Optional[BuildReport] = None


class AcceptanceRunner:
    """Runs acceptance cases against fixture apps under ``fixtures_dir``."""

    def __init__(
        self,
        fixtures_dir: Path,
        buildpacks: Callable[[], Sequence[Buildpack]],
        optional: Sequence[str] = (),
        runner: Optional[Runner] = None,
    ) -> None:
        self.fixtures_dir = Path(fixtures_dir)
        self.buildpacks = buildpacks
        self.optional = optional
        self.runner = runner

    def _build_once(self, app_dir: Path, layers_dir: Path, case: AcceptanceCase):
        output = BuildOutput(quiet=True)
        error = None
        report = None
        config = BuildConfig.from_environ(app_dir, layers_dir, environ=case.environ())
        controller = PhaseController(
            self.buildpacks(), config, output, optional=self.optional, runner=self.runner
        )
        try:
            report = controller.run()
        except Exception as e:
            error = e
            report = controller.report
        return report, output, error

    def run(self, case: AcceptanceCase) -> AcceptanceResult:
        """Build the case's app (twice with the cache test) and check expectations."""
        workdir = Path(tempfile.mkdtemp(prefix="webops-acceptance-"))
        try:
            app_dir = workdir / "app"
            shutil.copytree(self.fixtures_dir / case.app, app_dir)
            layers_dir = workdir / "layers"

            report, output, error = self._build_once(app_dir, layers_dir, case)
            failures = self._check(case, report, output, error)

            if case.enable_cache_test and not failures:
                report, output, error = self._build_once(app_dir, layers_dir, case)
                failures.extend(self._check(case, report, output, error))
                if sum(output.cache_misses.values()):
                    failures.append(
                        f"cache test: second build missed layers {sorted(output.cache_misses)}"
                    )
                if not sum(output.cache_hits.values()):
                    failures.append("cache test: second build reported no cache hits")

            return AcceptanceResult(case, not failures, failures, output.text, report)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _check(self, case: AcceptanceCase, report, output: BuildOutput, error) -> List[str]:
        failures = []
        text = output.text
        built = error is None and report is not None and report.succeeded

        if case.must_fail:
            if built:
                failures.append("build succeeded, want failure")
            if case.must_match:
                combined = f"{text}\n{error}" if error is not None else text
                if not matches_failure(combined, case.must_match):
                    failures.append(f"output does not match {case.must_match!r}")
        elif not built:
            failures.append(f"build failed: {error}" if error else "build did not pass detection")

        for wanted in case.must_output:
            if wanted not in text:
                failures.append(f"output lacks {wanted!r}")
        for unwanted in case.must_not_output:
            if unwanted in text:
                failures.append(f"output contains {unwanted!r}")
        return failures
