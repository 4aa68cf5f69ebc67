"""Ordered backup steps and the runner that executes them.

Each step backs up one subsystem into the snapshot directory. Steps run
strictly in order and a failing step never stops the ones after it; the
runner records an outcome for every step so the caller can report exactly
which subsystems failed.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from ..__logger__ import verbose
from ..__util__ import StepFailure
from ..config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """Everything a step may consult while running."""

    snapshot_dir: Path
    config: Config
    negotiated: object = None
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Step:
    """A named backup action."""

    name: str
    action: Callable[[StepContext], bool]


@dataclass(frozen=True)
class StepOutcome:
    """Result of running one step."""

    name: str
    success: bool
    elapsed: float = 0.0


@dataclass
class StepReport:
    """Outcomes of a run in execution order."""

    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def failures(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.success]

    def summary(self) -> str:
        return ", ".join(self.failures)


class BenchmarkRecorder:
    """Append per-step timings to the run's benchmark log."""

    def __init__(self, data_dir: Path, snapshot_id: str) -> None:
        self.path = Path(data_dir) / "benchmarks" / f"benchmark.{snapshot_id}.log"

    def record(self, name: str, elapsed: float) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(f"{name} took {int(round(elapsed))}s\n")
        except OSError as e:
            logger.warning("Could not write benchmark %s: %s", self.path, e)


class StepRunner:
    """Run steps in order, isolating each step's failure."""

    def __init__(self, benchmark: Optional[BenchmarkRecorder] = None) -> None:
        self.benchmark = benchmark

    def run_step(self, step: Step, ctx: StepContext) -> StepOutcome:
        logger.info("Backing up %s ...", step.name)
        start = time.monotonic()
        try:
            success = bool(step.action(ctx))
        except Exception as e:
            logger.error("Step %s failed: %s", step.name, e)
            success = False
        elapsed = time.monotonic() - start

        if self.benchmark is not None:
            self.benchmark.record(step.name, elapsed)
        if not success:
            logger.error("Backup of %s failed", step.name)
        verbose.debug("%s finished in %.1fs", step.name, elapsed)
        return StepOutcome(step.name, success, elapsed)

    def run(self, steps: list[Step], ctx: StepContext) -> StepReport:
        """Execute every step and return the outcomes in order."""
        report = StepReport()
        for step in steps:
            report.outcomes.append(self.run_step(step, ctx))
        return report


class CommandStep:
    """Step action running a collaborator executable.

    The collaborator runs inside the snapshot directory with the run's
    environment. When ``output`` is set, its standard output is written to
    that file in the snapshot.
    """

    def __init__(
        self,
        runner,
        command: str,
        *args: str,
        output: Optional[str] = None,
    ) -> None:
        self.runner = runner
        self.command = command
        self.args = args
        self.output = output

    def __call__(self, ctx: StepContext) -> bool:
        if self.output is None:
            result = self.runner.run(
                self.command, *self.args, cwd=ctx.snapshot_dir, env=ctx.env
            )
        else:
            with open(ctx.snapshot_dir / self.output, "wb") as out:
                result = self.runner.run(
                    self.command,
                    *self.args,
                    cwd=ctx.snapshot_dir,
                    env=ctx.env,
                    stdout=out,
                )
        if result.returncode != 0:
            raise StepFailure(f"{self.command} exited with status {result.returncode}")
        return True

    def __repr__(self) -> str:
        return f"CommandStep({self.command!r})"


def default_steps(config: Config, runner) -> list[Step]:
    """The standard backup pipeline for an appliance.

    Args:
        config: Run configuration; decides the optional steps
        runner: CollaboratorRunner used by command steps
    """
    steps = [
        Step("settings", CommandStep(runner, "ghe-backup-settings")),
        Step(
            "authorized-keys",
            CommandStep(
                runner, "ghe-export-authorized-keys", output="authorized-keys.json"
            ),
        ),
        Step(
            "ssh-host-keys",
            CommandStep(runner, "ghe-export-ssh-host-keys", output="ssh-host-keys.tar"),
        ),
        Step("mysql", CommandStep(runner, "ghe-backup-mysql")),
        Step("redis", CommandStep(runner, "ghe-backup-redis", output="redis.rdb")),
        Step("audit-log", CommandStep(runner, "ghe-backup-es-audit-log")),
        Step("hookshot", CommandStep(runner, "ghe-backup-es-hookshot")),
        Step("repositories", CommandStep(runner, "ghe-backup-repositories")),
    ]
    if config.backup_pages:
        steps.append(Step("pages", CommandStep(runner, "ghe-backup-pages")))
    steps.extend(
        [
            Step("storage", CommandStep(runner, "ghe-backup-storage")),
            Step("git-hooks", CommandStep(runner, "ghe-backup-git-hooks")),
            Step("elasticsearch", CommandStep(runner, "ghe-backup-es-rsync")),
        ]
    )
    if config.backup_fsck:
        steps.append(Step("fsck", CommandStep(runner, "ghe-backup-fsck")))
    return steps
