"""
Authorization Framework - Owns the live policy stack and its lifecycle.

Ties together the module loader, stack builder, evaluator and directory
watcher:

    start()    first build, synchronously; starts the reload worker and watcher
    reload()   load -> build -> atomic swap, serialized on one worker thread
    stop()     stops watcher and worker, unloads the live stack's modules
    authorize*/decide   per-request checks against the live stack

The live stack is published by assigning a single attribute. Readers pin
the generation they picked up for the duration of their check, so the
modules of a replaced stack are unloaded only after every check started
against it has finished.

authorize*() never raises: without a usable stack the configured default
decision (fail-open ``allow`` unless configured otherwise) is returned and
reported with outcome DEFAULT.
"""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

import yaml

from common.logging import get_logger
from policy_engine.config_loader import (
    FrameworkConfig,
    iter_module_references,
    load_framework_config,
)
from policy_engine.evaluator import evaluate_stack
from policy_engine.exceptions import StackBuildError
from policy_engine.interfaces import PolicyModule
from policy_engine.loader import ModuleLoader, unload_module
from policy_engine.models import (
    Decision,
    DecisionOutcome,
    FrameworkState,
    ReloadResult,
    ReloadStatus,
    RequestContext,
    Scope,
)
from policy_engine.stack import PolicyStack, StackBuilder
from policy_engine.watcher import DirectoryWatcher

logger = get_logger(__name__)


class _LiveGeneration:
    """
    A published stack together with the checks currently using it.

    Pins are deque appends and pops, which are atomic, so the read path never
    takes a lock. A pin is always taken before the retired flag is checked
    and the flag is always set before the pins are counted, so whichever side
    finishes last sees zero pins and fires the quiescence callback.
    """

    def __init__(self, stack: PolicyStack, on_quiescent: Callable[["_LiveGeneration"], Any]):
        self.stack = stack
        self._on_quiescent = on_quiescent
        self._pins: Deque[None] = deque()
        self._retired = False
        # one token: only the caller popping it runs the callback
        self._quiesce_token: Deque[None] = deque([None])
        self._drained = threading.Event()

    @property
    def active(self) -> int:
        return len(self._pins)

    def acquire(self) -> bool:
        """Pin the generation; fails once it has been retired."""
        self._pins.append(None)
        if self._retired:
            self.release()
            return False
        return True

    def release(self) -> None:
        self._pins.pop()
        if self._retired and not self._pins:
            self._quiesce()

    def retire(self) -> None:
        """Mark as replaced; the quiescence callback fires once no check uses it."""
        self._retired = True
        if not self._pins:
            self._quiesce()

    def wait_drained(self, timeout: Optional[float] = None) -> bool:
        return self._drained.wait(timeout)

    def _quiesce(self) -> None:
        try:
            self._quiesce_token.pop()
        except IndexError:
            return
        self._drained.set()
        self._on_quiescent(self)


class AuthorizationFramework:
    """
    Pluggable, hot-reloadable authorization for the request layer.

    Usage:
        framework = AuthorizationFramework(load_framework_config(path), config_path=path)
        framework.start()
        if framework.authorize_project(context, "kernel"):
            ...
        framework.stop()
    """

    def __init__(self, config: FrameworkConfig, config_path: Optional[str] = None):
        """
        Initialize the framework. Nothing is loaded until start().

        Args:
            config: Framework configuration
            config_path: YAML file to re-read on every reload. If None, the
                         given config is used until update_configuration().
        """
        self._config = config
        self._config_path = config_path
        self._builder = StackBuilder()

        self._cond = threading.Condition()
        self._state = FrameworkState.UNINITIALIZED
        self._live: Optional[_LiveGeneration] = None
        self._requested = 0
        self._handled = 0
        self._last_result: Optional[ReloadResult] = None

        self._worker: Optional[threading.Thread] = None
        self._watcher: Optional[DirectoryWatcher] = None
        self._unloader: Optional[ThreadPoolExecutor] = None

    # ── lifecycle ───────────────────────────────────────────────────

    @property
    def state(self) -> FrameworkState:
        return self._state

    @property
    def config(self) -> FrameworkConfig:
        return self._config

    @property
    def stack(self) -> Optional[PolicyStack]:
        """The live stack, or None when no stack is published."""
        live = self._live
        return live.stack if live is not None else None

    @property
    def generation(self) -> Optional[int]:
        stack = self.stack
        return stack.generation if stack is not None else None

    @property
    def last_reload(self) -> Optional[ReloadResult]:
        return self._last_result

    @property
    def watcher(self) -> Optional[DirectoryWatcher]:
        return self._watcher

    def start(self) -> Optional[ReloadResult]:
        """
        Build the first stack synchronously and start background reloading.

        A failed first build is logged and leaves the framework READY without
        a stack (default decision applies); it never aborts service startup.

        Returns:
            Result of the first build, or None if already started/stopped
        """
        with self._cond:
            if self._state != FrameworkState.UNINITIALIZED:
                logger.warning("authorization_framework_already_started", state=self._state.value)
                return None
            self._state = FrameworkState.BUILDING
            self._requested += 1
            target = self._requested

        logger.info("authorization_framework_starting", config_path=self._config_path)
        self._unloader = ThreadPoolExecutor(max_workers=1, thread_name_prefix="authz-unload")
        result = self._rebuild(target)

        self._worker = threading.Thread(target=self._run, name="authz-reload", daemon=True)
        self._worker.start()

        logger.info(
            "authorization_framework_started",
            status=result.status,
            generation=self.generation,
            default_decision=self._config.default_decision,
        )
        return result

    def stop(self) -> None:
        """
        Stop reloading and release every module of the live stack.

        After stop() all checks return the default decision.
        """
        with self._cond:
            if self._state == FrameworkState.STOPPED:
                return
            self._state = FrameworkState.STOPPED
            retired = self._live
            self._live = None
            self._cond.notify_all()

        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None

        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

        if retired is not None:
            retired.retire()
            if not retired.wait_drained(timeout=5.0):
                logger.warning(
                    "policy_stack_still_in_use",
                    generation=retired.stack.generation,
                    active_checks=retired.active,
                )

        if self._unloader is not None:
            self._unloader.shutdown(wait=True)
            self._unloader = None

        logger.info("authorization_framework_stopped")

    def request_reload(self) -> Optional[int]:
        """
        Ask for a rebuild without waiting for it.

        Requests arriving while a build runs are coalesced into a single
        follow-up build.

        Returns:
            Generation number of the request, or None if the framework is not running
        """
        with self._cond:
            if self._state in (FrameworkState.UNINITIALIZED, FrameworkState.STOPPED):
                logger.warning("policy_reload_ignored", state=self._state.value)
                return None
            self._requested += 1
            target = self._requested
            self._cond.notify_all()

        logger.info("policy_reload_requested", generation=target)
        return target

    def reload(self, wait: bool = True, timeout: Optional[float] = None) -> Optional[ReloadResult]:
        """
        Rebuild the stack from the current directory and configuration.

        The live stack keeps serving while the new one is built; on failure
        it stays live.

        Args:
            wait: Block until a build covering this request has finished
            timeout: Maximum seconds to wait

        Returns:
            The ReloadResult covering this request, or None when not waiting,
            timed out, or the framework is not running
        """
        target = self.request_reload()
        if target is None or not wait:
            return None

        with self._cond:
            done = self._cond.wait_for(
                lambda: self._handled >= target or self._state == FrameworkState.STOPPED,
                timeout,
            )
            if done and self._handled >= target:
                return self._last_result
        return None

    def update_configuration(self, config: FrameworkConfig) -> Optional[int]:
        """
        Replace the configuration and request a reload.

        The framework stops following its configuration file from now on.
        """
        with self._cond:
            self._config = config
            self._config_path = None
        return self.request_reload()

    # ── authorization ───────────────────────────────────────────────

    def authorize(self, context: RequestContext) -> bool:
        """Request-level check."""
        return self._decide(context, Scope.REQUEST, None).allowed

    def authorize_project(self, context: RequestContext, project: str) -> bool:
        """Project-scoped check."""
        return self._decide(context, Scope.PROJECT, project).allowed

    def authorize_group(self, context: RequestContext, group: str) -> bool:
        """Group-scoped check."""
        return self._decide(context, Scope.GROUP, group).allowed

    def decide(
        self,
        context: RequestContext,
        project: Optional[str] = None,
        group: Optional[str] = None,
    ) -> Decision:
        """
        Full decision for a check, suitable for logging or auditing.

        Raises:
            ValueError: If both project and group are given
        """
        if project is not None and group is not None:
            raise ValueError("A check is scoped to a project or a group, not both")
        if project is not None:
            return self._decide(context, Scope.PROJECT, project)
        if group is not None:
            return self._decide(context, Scope.GROUP, group)
        return self._decide(context, Scope.REQUEST, None)

    def filter_projects(self, context: RequestContext, projects: Iterable[str]) -> List[str]:
        """Projects the context may access, in the given order."""
        return [project for project in projects if self.authorize_project(context, project)]

    def filter_groups(self, context: RequestContext, groups: Iterable[str]) -> List[str]:
        """Groups the context may access, in the given order."""
        return [group for group in groups if self.authorize_group(context, group)]

    def status(self) -> Dict[str, Any]:
        """Snapshot of the framework for administrators and metrics collectors."""
        stack = self.stack
        watcher = self._watcher
        last = self._last_result
        return {
            "state": self._state.value,
            "generation": stack.generation if stack is not None else None,
            "entries": stack.entry_names if stack is not None else [],
            "plugin_directory": self._config.plugin_directory,
            "default_decision": self._config.default_decision,
            "watching": watcher.is_watching if watcher is not None else False,
            "last_reload": last.model_dump() if last is not None else None,
        }

    def _acquire(self) -> Optional[_LiveGeneration]:
        while True:
            live = self._live
            if live is None:
                return None
            if live.acquire():
                return live
            # retired between the read and the pin; the replacement is already published

    def _decide(self, context: RequestContext, scope: Scope, target: Optional[str]) -> Decision:
        started = time.perf_counter()
        live = self._acquire()
        if live is None:
            return self._default_decision(context, scope, target, started, None)

        try:
            if live.stack.is_empty:
                return self._default_decision(
                    context, scope, target, started, live.stack.generation
                )
            verdict = evaluate_stack(live.stack, context, scope, target)
        except Exception as e:
            logger.error(
                "authorization_evaluation_failed",
                scope=scope.value,
                target=target,
                request_id=context.request_id,
                generation=live.stack.generation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._default_decision(context, scope, target, started, live.stack.generation)
        finally:
            live.release()

        decision = Decision(
            allowed=verdict.allowed,
            outcome=DecisionOutcome.ALLOW if verdict.allowed else DecisionOutcome.DENY,
            scope=scope,
            target=target,
            generation=live.stack.generation,
            decided_by=verdict.decided_by,
            evaluated=verdict.evaluated,
            evaluation_time_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug(
            "authorization_decision",
            user_id=context.user_id,
            request_id=context.request_id,
            scope=scope.value,
            target=target,
            outcome=decision.outcome,
            generation=decision.generation,
            decided_by=decision.decided_by,
            evaluation_time_ms=decision.evaluation_time_ms,
        )
        return decision

    def _default_decision(
        self,
        context: RequestContext,
        scope: Scope,
        target: Optional[str],
        started: float,
        generation: Optional[int],
    ) -> Decision:
        allowed = self._config.default_allows
        decision = Decision(
            allowed=allowed,
            outcome=DecisionOutcome.DEFAULT,
            scope=scope,
            target=target,
            generation=generation,
            evaluation_time_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug(
            "authorization_default_decision",
            user_id=context.user_id,
            request_id=context.request_id,
            scope=scope.value,
            target=target,
            allowed=allowed,
            state=self._state.value,
        )
        return decision

    # ── rebuilding ──────────────────────────────────────────────────

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(
                    lambda: self._requested != self._handled
                    or self._state == FrameworkState.STOPPED
                )
                if self._state == FrameworkState.STOPPED:
                    return
                self._state = FrameworkState.BUILDING
                target = self._requested
            self._rebuild(target)

    def _read_config(self) -> FrameworkConfig:
        with self._cond:
            config_path = self._config_path
        if config_path is None:
            return self._config

        config = load_framework_config(config_path)
        with self._cond:
            if self._config_path == config_path:
                self._config = config
        return config

    def _rebuild(self, target: int) -> ReloadResult:
        started = time.perf_counter()
        logger.info("policy_stack_build_started", generation=target)

        stack: Optional[PolicyStack] = None
        failures: Dict[str, str] = {}
        error: Optional[str] = None
        try:
            config = self._read_config()
            self._sync_watcher(config)
            if config.plugin_directory is None:
                raise StackBuildError("No plugin directory configured")

            loader = ModuleLoader(config.plugin_directory, load_timeout=config.load_timeout_seconds)
            results = loader.load_all(iter_module_references(config.stack), generation=target)
            failures = {key: result.error for key, result in results.items() if not result.ok}
            try:
                stack = self._builder.build(config.stack, results, target)
            except StackBuildError:
                self._discard(result.module for result in results.values() if result.ok)
                raise
        except StackBuildError as e:
            failures.update(e.entries)
            error = str(e)
        except (FileNotFoundError, yaml.YAMLError, ValueError) as e:
            error = f"Invalid configuration: {e}"
        except Exception as e:
            error = f"Unexpected {type(e).__name__} while building: {e}"
            logger.error(
                "policy_stack_build_crashed",
                generation=target,
                error=str(e),
                error_type=type(e).__name__,
            )

        return self._publish(target, stack, failures, error, started)

    def _publish(
        self,
        target: int,
        stack: Optional[PolicyStack],
        failures: Dict[str, str],
        error: Optional[str],
        started: float,
    ) -> ReloadResult:
        retired: Optional[_LiveGeneration] = None
        with self._cond:
            if self._state == FrameworkState.STOPPED:
                status = ReloadStatus.STOPPED
                error = error or "Framework stopped during the build"
            elif target != self._requested:
                # a newer request exists; publishing would race it with an older stack
                status = ReloadStatus.SUPERSEDED
                error = error or f"Superseded by reload request {self._requested}"
            elif stack is None:
                status = ReloadStatus.FAILED
            else:
                status = ReloadStatus.PUBLISHED
                retired = self._live
                self._live = _LiveGeneration(stack, self._on_quiescent)

            result = ReloadResult(
                status=status,
                generation=target,
                entries=stack.entry_names if stack is not None else [],
                failures=failures,
                error=error,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            if status != ReloadStatus.SUPERSEDED:
                self._handled = max(self._handled, target)
                self._last_result = result
                if self._state != FrameworkState.STOPPED:
                    self._state = FrameworkState.READY
                self._cond.notify_all()

        if status == ReloadStatus.PUBLISHED:
            logger.info(
                "policy_stack_published",
                generation=target,
                entries=result.entries,
                degraded_entries=failures,
                duration_ms=result.duration_ms,
            )
            if retired is not None:
                retired.retire()
        elif status == ReloadStatus.FAILED:
            logger.error(
                "policy_stack_build_failed",
                generation=target,
                error=error,
                failures=failures,
                live_generation=self.generation,
                duration_ms=result.duration_ms,
            )
        else:
            logger.info(
                "policy_stack_discarded",
                generation=target,
                status=status.value,
                reason=error,
            )
            if stack is not None:
                self._discard(stack.modules())
        return result

    def _sync_watcher(self, config: FrameworkConfig) -> None:
        desired = Path(config.plugin_directory) if config.plugin_directory and config.watchdog else None
        current = self._watcher.directory if self._watcher is not None else None
        if desired == current:
            return

        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

        with self._cond:
            if self._state == FrameworkState.STOPPED or desired is None:
                return
            self._watcher = DirectoryWatcher(
                str(desired),
                self.request_reload,
                debounce_seconds=config.debounce_seconds,
                retry_interval_seconds=config.retry_interval_seconds,
            )
        self._watcher.start()

    def _on_quiescent(self, generation: _LiveGeneration) -> None:
        executor = self._unloader
        if executor is not None:
            try:
                executor.submit(self._unload_stack, generation.stack)
                return
            except RuntimeError:
                # executor already shut down during stop()
                pass
        self._unload_stack(generation.stack)

    def _unload_stack(self, stack: PolicyStack) -> None:
        self._discard(stack.modules())
        logger.info("policy_stack_unloaded", generation=stack.generation)

    def _discard(self, modules: Iterable[PolicyModule]) -> None:
        for module in modules:
            unload_module(module)
