"""
Build step execution.

Steps run strictly in declared order inside the build directory, each as a
structured command (no shell). The first non-zero exit stops the sequence;
later steps never start. Combined stdout/stderr of every step is kept on
the result, successful or not.
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from formulakit.build.environment import expand_placeholders
from formulakit.core.exceptions import BuildStepError, SmokeTestError
from formulakit.formula.model import BuildStep

logger = logging.getLogger(__name__)

# Shell convention for "command not found"
EXIT_NOT_FOUND = 127


@dataclass
class StepResult:
    """Outcome of one build step."""

    index: int
    argv: List[str]
    exit_status: Optional[int]
    """Process exit status; None if the step timed out"""

    output: str
    """Combined stdout and stderr"""

    duration: float

    @property
    def success(self) -> bool:
        return self.exit_status == 0


@dataclass
class BuildResult:
    """Outcome of a build step sequence."""

    steps: List[StepResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def exit_status(self) -> Optional[int]:
        return self.steps[-1].exit_status if self.steps else 0

    @property
    def output(self) -> str:
        return "".join(step.output for step in self.steps)


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _execute(
    argv: List[str],
    cwd: Path,
    env: Mapping[str, str],
    timeout: Optional[float],
    index: int,
) -> StepResult:
    """Run one command, never raising for the command's own failure."""
    start = time.time()
    program = argv[0]

    # Look the program up on the build PATH, not the caller's
    if os.sep not in program and not (os.altsep and os.altsep in program):
        resolved = shutil.which(program, path=env.get("PATH", os.defpath))
    else:
        resolved = program if Path(cwd, program).exists() or Path(program).exists() else None

    if resolved is None:
        return StepResult(
            index=index,
            argv=argv,
            exit_status=EXIT_NOT_FOUND,
            output=f"{program}: command not found\n",
            duration=time.time() - start,
        )

    try:
        completed = subprocess.run(
            [resolved, *argv[1:]],
            cwd=str(cwd),
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
            # Own session: a terminal Ctrl-C must not reach running steps
            start_new_session=os.name != "nt",
        )
        exit_status: Optional[int] = completed.returncode
        output = _decode(completed.stdout)
    except subprocess.TimeoutExpired as e:
        exit_status = None
        output = _decode(e.output) + f"\n{program}: timed out after {timeout}s\n"
    except OSError as e:
        exit_status = EXIT_NOT_FOUND
        output = f"{program}: {e}\n"

    return StepResult(
        index=index,
        argv=argv,
        exit_status=exit_status,
        output=output,
        duration=time.time() - start,
    )


class BuildRunner:
    """
    Runs formula build steps.

    Example:
        >>> runner = BuildRunner(step_timeout=1800)
        >>> result = runner.run(formula.build_steps, staging.source_dir, env)
        >>> print(result.output)
    """

    def __init__(self, step_timeout: Optional[float] = None):
        """
        Initialize build runner.

        Args:
            step_timeout: Ceiling in seconds for any single step (None: no limit)
        """
        self.step_timeout = step_timeout

    def run(
        self,
        steps: Sequence[BuildStep],
        work_dir: Path,
        env: Mapping[str, str],
        placeholders: Optional[Mapping[str, str]] = None,
    ) -> BuildResult:
        """
        Execute steps in order, stopping at the first failure.

        Args:
            steps: Ordered build steps
            work_dir: Working directory for every step
            env: Base environment; each step's own env is overlaid on it
            placeholders: Values for {buildpath}, {prefix}, {name}

        Returns:
            BuildResult with one StepResult per executed step

        Raises:
            BuildStepError: At the first step that exits non-zero, cannot be
                started, or times out
        """
        work_dir = Path(work_dir)
        context = dict(placeholders or {})
        context.setdefault("buildpath", str(work_dir))

        result = BuildResult()
        start = time.time()

        for index, step in enumerate(steps):
            argv = [expand_placeholders(arg, context) for arg in step.argv]
            step_env = dict(env)
            for key, value in step.env.items():
                step_env[key] = expand_placeholders(value, context)

            logger.info(f"Build step {index + 1}/{len(steps)}: {' '.join(argv)}")
            step_result = _execute(argv, work_dir, step_env, self.step_timeout, index)
            result.steps.append(step_result)

            if step_result.output:
                logger.debug(step_result.output.rstrip())

            if not step_result.success:
                result.duration = time.time() - start
                logger.error(
                    f"Build step {index + 1} failed with status {step_result.exit_status}"
                )
                raise BuildStepError(
                    index, step_result.exit_status, step_result.output, argv
                )

        result.duration = time.time() - start
        logger.info(f"Build finished in {result.duration:.2f}s ({len(steps)} steps)")
        return result


def run_smoke_test(
    executable: Path,
    args: Sequence[str] = ("--version",),
    timeout: Optional[float] = 60,
    env: Optional[Mapping[str, str]] = None,
) -> StepResult:
    """
    Run an installed executable as a quick functionality check.

    Args:
        executable: Installed program
        args: Arguments (default: --version)
        timeout: Seconds before the check is considered hung
        env: Environment (default: PATH=os.defpath only)

    Returns:
        StepResult of the invocation

    Raises:
        SmokeTestError: If the program is missing, fails or hangs
    """
    executable = Path(executable)
    if not executable.is_file():
        raise SmokeTestError(f"Installed executable not found: {executable}")

    argv = [str(executable), *args]
    result = _execute(
        argv,
        executable.parent,
        env if env is not None else {"PATH": os.defpath},
        timeout,
        index=0,
    )

    if not result.success:
        raise SmokeTestError(
            f"Smoke test '{' '.join(argv)}' failed with status {result.exit_status}:\n"
            f"{result.output.strip()}"
        )

    logger.info(f"Smoke test passed: {' '.join(argv)}")
    return result
