"""
Policy stack - immutable evaluation stacks and the builder producing them.

A PolicyStack is built once from a configuration snapshot and the loader's
results and is never modified afterwards; the framework replaces it
wholesale on reload.
"""

from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from common.logging import get_logger
from policy_engine.config_loader import StackEntryConfig
from policy_engine.exceptions import StackBuildError
from policy_engine.interfaces import PolicyModule
from policy_engine.loader import LoadResult
from policy_engine.models import ControlFlag

logger = get_logger(__name__)


class StackEntry(BaseModel):
    """
    One position in a policy stack.

    Holds either a loaded policy module or a nested sub-stack, bound to a
    control flag. ``projects``/``groups`` restrict the entry to scoped
    checks on those targets; empty means no restriction.
    """

    key: str = Field(..., description="Position in the configured stack tree")
    name: str
    flag: ControlFlag
    module: Optional[PolicyModule] = None
    substack: Optional["PolicyStack"] = None
    projects: FrozenSet[str] = frozenset()
    groups: FrozenSet[str] = frozenset()

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class PolicyStack(BaseModel):
    """Ordered, immutable sequence of stack entries."""

    generation: int = Field(..., description="Build number; increases with every reload request")
    entries: Tuple[StackEntry, ...] = ()

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def entry_names(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def modules(self) -> Iterator[PolicyModule]:
        """All modules of the stack, nested ones included, in evaluation order."""
        for entry in self.entries:
            if entry.module is not None:
                yield entry.module
            if entry.substack is not None:
                yield from entry.substack.modules()


StackEntry.model_rebuild()


class StackBuilder:
    """
    Binds configured entries to loaded modules.

    Entries whose module failed to load are dropped when they are OPTIONAL
    or SUFFICIENT. A failed REQUIRED or REQUISITE entry fails the whole
    build: silently losing a mandatory check would widen access. A sub-stack
    left without entries counts as failed under its own flag.
    """

    def build(
        self,
        entries: List[StackEntryConfig],
        results: Dict[str, LoadResult],
        generation: int,
    ) -> PolicyStack:
        """
        Build a new stack.

        Args:
            entries: Ordered stack configuration
            results: Loader results keyed by entry key
            generation: Build number of the new stack

        Returns:
            New immutable PolicyStack

        Raises:
            StackBuildError: If a mandatory entry's module failed to load
        """
        offending: Dict[str, str] = {}
        degraded: Dict[str, str] = {}
        built = self._build_entries(entries, results, generation, "", offending, degraded)

        if degraded:
            logger.warning(
                "policy_stack_degraded",
                generation=generation,
                omitted_entries=degraded,
            )

        if offending:
            raise StackBuildError(
                "Mandatory policy modules failed to load: "
                + ", ".join(f"{key} ({reason})" for key, reason in offending.items()),
                entries=offending,
            )

        return PolicyStack(generation=generation, entries=tuple(built))

    def _build_entries(
        self,
        entries: List[StackEntryConfig],
        results: Dict[str, LoadResult],
        generation: int,
        prefix: str,
        offending: Dict[str, str],
        degraded: Dict[str, str],
    ) -> List[StackEntry]:
        built: List[StackEntry] = []
        for index, config in enumerate(entries):
            key = f"{prefix}{index}"
            fields = dict(
                key=key,
                name=config.name,
                flag=config.flag,
                projects=frozenset(config.projects),
                groups=frozenset(config.groups),
            )

            if config.is_stack:
                children = self._build_entries(
                    config.stack, results, generation, f"{key}.", offending, degraded
                )
                if not children:
                    # nothing left to evaluate, the sub-stack would only abstain
                    reason = f"{config.name}: sub-stack has no loaded entries"
                    if config.flag.is_mandatory:
                        offending[key] = reason
                    else:
                        degraded[key] = reason
                    continue
                built.append(
                    StackEntry(substack=PolicyStack(generation=generation, entries=tuple(children)), **fields)
                )
                continue

            result = results.get(key)
            if result is None or not result.ok:
                reason = result.error if result is not None else "module was not loaded"
                if config.flag.is_mandatory:
                    offending[key] = f"{config.name}: {reason}"
                else:
                    degraded[key] = f"{config.name}: {reason}"
                continue

            built.append(StackEntry(module=result.module, **fields))
        return built
