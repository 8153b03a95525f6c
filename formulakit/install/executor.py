"""
Install orchestration.

The executor drives one formula through

    Pending -> Fetching -> Verifying -> Building -> Installing -> Done

with a terminal Failed(stage, cause) reachable from every non-terminal
state. Components only raise; the executor is the single place that
aborts a run, tears down the staging area and reports.

Runs for the same formula are serialized by a per-formula file lock. A run
that waited for the lock re-checks the install manifest first, so it ends
in Done without rebuilding when the other run already installed the same
formula.

Example:
    >>> executor = InstallExecutor.from_config(load_config())
    >>> outcome = executor.install(registry.get("scenery"))
    >>> if not outcome.success:
    ...     print(f"failed while {outcome.failed_stage.value}: {outcome.error}")
"""

import concurrent.futures
import contextlib
import logging
import signal
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from formulakit.build.environment import BuildEnvironment
from formulakit.build.runner import BuildResult, BuildRunner, StepResult, run_smoke_test
from formulakit.config.parser import FormulaKitConfig
from formulakit.core.directory import get_layout
from formulakit.core.download import DownloadProgress, Fetcher
from formulakit.core.exceptions import (
    FormulaKitError,
    InstallCancelled,
    ManifestError,
    ManifestNotFoundError,
    MissingArtifactError,
    SmokeTestError,
)
from formulakit.core.locking import LockManager
from formulakit.core.manifest import InstallManifest, ManifestStore
from formulakit.core.verification import Verifier
from formulakit.formula.model import Formula, formula_digest
from formulakit.formula.registry import FormulaRegistry
from formulakit.install.installer import Installer
from formulakit.install.staging import StagingContext

logger = logging.getLogger(__name__)


class InstallState(Enum):
    """Stages of an install run."""

    PENDING = "pending"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    BUILDING = "building"
    INSTALLING = "installing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (InstallState.DONE, InstallState.FAILED)


@dataclass
class InstallOutcome:
    """Result of one install run."""

    formula: Formula
    state: InstallState = InstallState.PENDING
    failed_stage: Optional[InstallState] = None
    error: Optional[BaseException] = None
    manifest: Optional[InstallManifest] = None
    build_result: Optional[BuildResult] = None
    was_cached: bool = False
    transitions: List[InstallState] = field(
        default_factory=lambda: [InstallState.PENDING]
    )

    @property
    def success(self) -> bool:
        return self.state is InstallState.DONE

    def enter(self, state: InstallState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Install already finished in state {self.state.value}")
        self.state = state
        self.transitions.append(state)
        logger.info(f"{self.formula.name}: {state.value}")

    def fail(self, error: BaseException) -> None:
        self.failed_stage = self.state
        self.error = error
        self.state = InstallState.FAILED
        self.transitions.append(InstallState.FAILED)
        logger.error(
            f"{self.formula.name}: failed while {self.failed_stage.value}: {error}"
        )


class CancellationToken:
    """
    Thread-safe cancellation flag.

    Cancellation is observed between stages only; a build step that is
    already running is allowed to finish or fail on its own.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@contextlib.contextmanager
def cancel_on_interrupt(token: CancellationToken):
    """
    Turn the first Ctrl-C into token.cancel() while the block runs.

    Running build steps are left to finish; installs stop at their next
    stage boundary. A second Ctrl-C raises KeyboardInterrupt as usual.
    Signal handlers can only be set from the main thread; elsewhere this
    is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def handle(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        logger.warning("Interrupted: stopping after the current stage (Ctrl-C again to abort)")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handle)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


class InstallExecutor:
    """
    Runs install and uninstall operations for formulas.

    Attributes:
        prefix: Install prefix (artifacts land under it)
        staging_dir: Parent of per-run staging areas
        manifest_store: Persisted install manifests
        lock_manager: Per-formula locks
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        prefix: Optional[Path] = None,
        fetcher: Optional[Fetcher] = None,
        verifier: Optional[Verifier] = None,
        runner: Optional[BuildRunner] = None,
        environment: Optional[BuildEnvironment] = None,
        lock_manager: Optional[LockManager] = None,
        manifest_store: Optional[ManifestStore] = None,
        lock_timeout: float = -1,
        test_timeout: Optional[float] = 60,
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    ):
        layout = get_layout(home)
        self.prefix = Path(prefix) if prefix is not None else layout["prefix"]
        self.staging_dir = layout["staging"]
        self.fetcher = fetcher or Fetcher()
        self.verifier = verifier or Verifier()
        self.runner = runner or BuildRunner()
        self.environment = environment or BuildEnvironment()
        self.lock_manager = lock_manager or LockManager(layout["lock"])
        self.manifest_store = manifest_store or ManifestStore(layout["manifests"])
        self.lock_timeout = lock_timeout
        self.test_timeout = test_timeout
        self.progress_callback = progress_callback

    @classmethod
    def from_config(
        cls,
        config: FormulaKitConfig,
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> "InstallExecutor":
        """Create an executor wired from configuration."""
        return cls(
            home=config.home,
            prefix=config.prefix,
            fetcher=Fetcher(
                timeout=config.fetch.timeout,
                max_retries=config.fetch.max_retries,
                backoff_base=config.fetch.backoff_base,
                backoff_cap=config.fetch.backoff_cap,
            ),
            runner=BuildRunner(step_timeout=config.build.step_timeout),
            environment=BuildEnvironment(passthrough=config.build.passthrough_env),
            lock_timeout=config.lock_timeout,
            test_timeout=config.build.test_timeout,
            progress_callback=progress_callback,
        )

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(
        self,
        formula: Formula,
        cancel_token: Optional[CancellationToken] = None,
        force: bool = False,
    ) -> InstallOutcome:
        """
        Install a formula.

        Args:
            formula: Formula to install
            cancel_token: Checked between stages
            force: Rebuild even if an identical install is recorded

        Returns:
            InstallOutcome in state DONE or FAILED; never raises for
            FormulaKit or file system errors
        """
        outcome = InstallOutcome(formula=formula)

        try:
            with self.lock_manager.formula_lock(formula.name, self.lock_timeout):
                self._install_locked(formula, outcome, cancel_token, force)
        except (FormulaKitError, OSError) as e:
            outcome.fail(e)

        return outcome

    def _install_locked(
        self,
        formula: Formula,
        outcome: InstallOutcome,
        cancel_token: Optional[CancellationToken],
        force: bool,
    ) -> None:
        digest = formula_digest(formula)

        if not force:
            existing = self._satisfied_manifest(formula.name, digest)
            if existing is not None:
                logger.info(f"{formula.name} is already installed and up to date")
                outcome.manifest = existing
                outcome.was_cached = True
                outcome.enter(InstallState.DONE)
                return

        tool_dirs = self.environment.resolve(formula.dependencies)
        self._check_cancelled(cancel_token)

        staging = StagingContext(self.staging_dir, formula.name, formula.archive_name)
        try:
            staging.create()

            outcome.enter(InstallState.FETCHING)
            self.fetcher.fetch(formula.url, staging.archive_path, self.progress_callback)
            self._check_cancelled(cancel_token)

            outcome.enter(InstallState.VERIFYING)
            archive_digest = self.verifier.verify(staging.archive_path, formula.digest)
            staging.extract()
            self._check_cancelled(cancel_token)

            outcome.enter(InstallState.BUILDING)
            context = {
                "buildpath": str(staging.source_dir),
                "prefix": str(self.prefix),
                "name": formula.name,
            }
            env = self.environment.compose(
                tool_dirs,
                home=staging.home_dir,
                tmp_dir=staging.tmp_dir,
                overlay={**formula.env, **staging.env_overrides},
                context=context,
            )
            outcome.build_result = self.runner.run(
                formula.build_steps, staging.source_dir, env, placeholders=context
            )
            for source in formula.artifacts:
                if not (staging.source_dir / source).is_file():
                    raise MissingArtifactError(source, staging.source_dir)
            self._check_cancelled(cancel_token)

            outcome.enter(InstallState.INSTALLING)
            previous = self._load_manifest(formula.name)
            installer = Installer(self.prefix, backup_dir=staging.backup_dir)

            def commit(manifest: InstallManifest) -> None:
                manifest.archive_digest = archive_digest
                self.manifest_store.save(manifest)

            outcome.manifest = installer.install(
                formula.artifacts, staging.source_dir, formula.name, digest, commit=commit
            )
            if previous is not None:
                self._remove_superseded(installer, previous, outcome.manifest)

            outcome.enter(InstallState.DONE)
        finally:
            self._teardown(staging)

    def _check_cancelled(self, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise InstallCancelled("Install cancelled")

    def _load_manifest(self, name: str) -> Optional[InstallManifest]:
        try:
            return self.manifest_store.load(name)
        except ManifestError as e:
            logger.warning(f"Ignoring unreadable manifest for {name}: {e}")
            return None

    def _satisfied_manifest(self, name: str, digest: str) -> Optional[InstallManifest]:
        """Manifest of an identical, intact install, if there is one."""
        manifest = self._load_manifest(name)
        if manifest is None or manifest.formula_digest != digest:
            return None
        if not manifest.is_satisfied():
            logger.info(f"Installed files of {name} changed, reinstalling")
            return None
        return manifest

    def _remove_superseded(
        self, installer: Installer, previous: InstallManifest, current: InstallManifest
    ) -> None:
        """Remove files of an older install that the new one no longer ships."""
        kept = {entry.destination for entry in current.entries}
        stale = [e for e in previous.entries if e.destination not in kept]
        if not stale:
            return
        try:
            installer.uninstall(stale)
        except FormulaKitError as e:
            logger.warning(f"Could not remove files from previous install: {e}")

    def _teardown(self, staging: StagingContext) -> None:
        """Best-effort staging cleanup; never masks the run's own error."""
        try:
            staging.teardown()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to clean up staging directory {staging.root}: {e}")

    # ------------------------------------------------------------------
    # Queries and removal
    # ------------------------------------------------------------------

    def is_installed(self, formula: Formula) -> bool:
        """True if this exact formula is installed and intact."""
        return self._satisfied_manifest(formula.name, formula_digest(formula)) is not None

    def installed(self) -> List[InstallManifest]:
        return self.manifest_store.list()

    def uninstall(self, name: str) -> InstallManifest:
        """
        Remove an installed formula's files and manifest.

        Returns:
            The manifest that was removed

        Raises:
            ManifestNotFoundError: If the formula is not installed
            InstallError: If a file cannot be removed
        """
        with self.lock_manager.formula_lock(name, self.lock_timeout):
            manifest = self.manifest_store.load(name)
            if manifest is None:
                raise ManifestNotFoundError(name)

            Installer(self.prefix).uninstall(manifest.entries)
            self.manifest_store.remove(name)
            logger.info(f"Uninstalled {name}")
            return manifest

    def smoke_test(self, formula: Formula) -> StepResult:
        """
        Run the installed executable of a formula with its test arguments.

        Raises:
            ManifestNotFoundError: If the formula is not installed
            SmokeTestError: If there is nothing to run or the run fails
        """
        manifest = self.manifest_store.load(formula.name)
        if manifest is None:
            raise ManifestNotFoundError(formula.name)

        executable = formula.executable
        if executable is None:
            raise SmokeTestError(f"{formula.name} installs no executable under bin/")
        if not formula.test_args:
            raise SmokeTestError(f"{formula.name} declares no smoke test")

        return run_smoke_test(
            self.prefix / executable, formula.test_args, timeout=self.test_timeout
        )


class Planner:
    """
    Turns requested formula names into install runs.

    Example:
        >>> planner = Planner(registry, executor)
        >>> outcomes = planner.install_all(["scenery", "tidy"], max_workers=2)
    """

    def __init__(self, registry: FormulaRegistry, executor: InstallExecutor):
        self.registry = registry
        self.executor = executor

    def plan(self, names: Iterable[str]) -> List[Formula]:
        """
        Resolve names to formulas in request order, without duplicates.

        Raises:
            FormulaNotFoundError: If any name is unknown (before anything runs)
        """
        formulas = []
        seen = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            formulas.append(self.registry.get(name))
        return formulas

    def install_all(
        self,
        names: Iterable[str],
        max_workers: int = 1,
        cancel_token: Optional[CancellationToken] = None,
        force: bool = False,
    ) -> List[InstallOutcome]:
        """
        Install every requested formula.

        Each formula runs in its own staging area; with max_workers > 1
        they run in parallel threads. Ctrl-C cancels the token instead of
        killing running build steps; the affected outcomes end FAILED with
        InstallCancelled.

        Returns:
            Outcomes in request order
        """
        formulas = self.plan(names)
        if not formulas:
            return []

        token = cancel_token or CancellationToken()
        with cancel_on_interrupt(token):
            if max_workers <= 1 or len(formulas) == 1:
                return [self.executor.install(formula, token, force) for formula in formulas]

            with concurrent.futures.ThreadPoolExecutor(
                max_workers=min(max_workers, len(formulas)),
            ) as pool:
                futures = [
                    pool.submit(self.executor.install, formula, token, force)
                    for formula in formulas
                ]
                try:
                    return [future.result() for future in futures]
                except KeyboardInterrupt:
                    token.cancel()
                    raise
