"""Run plan: what to execute for a trigger and where."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from rerunner.errors import StartupValidationError

logger = logging.getLogger(__name__)


class ShellKind(StrEnum):
    """How an invocation string is turned into an argument vector."""

    EXEC = "exec"
    SH = "sh"
    BASH = "bash"


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """One command: where to run it and what to run."""

    working_directory: Path | None
    invocation: str
    shell: ShellKind = ShellKind.EXEC

    @property
    def label(self) -> str:
        return self.invocation

    def argv(self) -> list[str]:
        """Build the argument vector for the configured shell kind."""
        if self.shell is ShellKind.EXEC:
            return shlex.split(self.invocation)
        return [str(self.shell), "-c", self.invocation]


@dataclass(frozen=True, slots=True)
class WatchTarget:
    """The script being watched. Immutable for the supervisor lifetime."""

    path: Path

    @classmethod
    def from_path(cls, raw: str | Path, *, role: str = "file") -> WatchTarget:
        """Validate that *raw* is an existing file and wrap it.

        Raises `StartupValidationError` naming *role* when the path is missing
        or is not a regular file.
        """
        path = Path(raw).expanduser()
        if not path.exists():
            msg = f"{role} does not exist: {path}"
            raise StartupValidationError(msg)
        if not path.is_file():
            msg = f"{role} is not a file: {path}"
            raise StartupValidationError(msg)
        return cls(path=path)

    @property
    def working_directory(self) -> Path | None:
        """Parent directory, or None when the path has no directory part."""
        parent = self.path.parent
        if parent == Path():
            return None
        return parent

    @property
    def invocation(self) -> str:
        return f"./{self.path.name}"

    def command(self, shell: ShellKind = ShellKind.EXEC) -> CommandSpec:
        return CommandSpec(
            working_directory=self.working_directory,
            invocation=shlex.quote(self.invocation),
            shell=shell,
        )


@dataclass(frozen=True, slots=True)
class RunPlan:
    """Primary command plus an optional follow-up run only after success."""

    primary: CommandSpec
    then: CommandSpec | None = None

    @property
    def has_then(self) -> bool:
        return self.then is not None


def build_plan(
    target: WatchTarget,
    then_path: str | Path | None = None,
    *,
    shell: ShellKind = ShellKind.EXEC,
) -> RunPlan:
    """Build the plan for *target*, validating the follow-up script up front."""
    then_spec: CommandSpec | None = None
    if then_path is not None:
        then_target = WatchTarget.from_path(then_path, role="--then script")
        then_spec = then_target.command(shell)
    plan = RunPlan(primary=target.command(shell), then=then_spec)
    logger.debug(
        "Run plan: primary=%s cwd=%s then=%s",
        plan.primary.label,
        plan.primary.working_directory,
        plan.then.label if plan.then else None,
    )
    return plan
