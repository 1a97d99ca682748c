"""
Stack Evaluator - The short-circuiting decision algorithm.

Walks a PolicyStack in configured order, asking each applicable entry's
predicate and combining the answers according to the entries' control
flags:

    failure   REQUISITE  -> stop, deny
              REQUIRED   -> remember the failure, continue
              SUFFICIENT -> continue
              OPTIONAL   -> continue (decides only when it is the only entry)
    success   SUFFICIENT -> stop, allow, unless a REQUIRED entry already failed
              others     -> continue
    exhausted            -> deny if a REQUIRED entry failed, otherwise allow

Entries that do not implement the predicate for the evaluated scope, or
whose project/group restriction excludes the target, abstain.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from common.logging import get_logger
from policy_engine.models import ControlFlag, RequestContext, Scope
from policy_engine.stack import PolicyStack, StackEntry

logger = get_logger(__name__)


class StackVerdict(BaseModel):
    """Result of evaluating one stack."""

    allowed: bool
    decided_by: Optional[str] = Field(None, description="Entry that short-circuited, if any")
    evaluated: List[str] = Field(default_factory=list)
    applied: bool = Field(False, description="Whether any entry took part in the decision")


def evaluate_stack(
    stack: PolicyStack,
    context: RequestContext,
    scope: Scope = Scope.REQUEST,
    target: Optional[str] = None,
) -> StackVerdict:
    """
    Evaluate a stack for a request context.

    Args:
        stack: Stack to evaluate
        context: Request context, never modified
        scope: REQUEST, PROJECT or GROUP
        target: Project or group name for scoped checks

    Returns:
        StackVerdict with the decision and the entries that were asked
    """
    evaluated: List[str] = []
    has_failed_required = False
    applied = False
    only_entry = len(stack.entries) == 1

    for entry in stack.entries:
        passed = _evaluate_entry(entry, context, scope, target, evaluated)
        if passed is None:
            continue
        applied = True

        if passed:
            if entry.flag == ControlFlag.SUFFICIENT and not has_failed_required:
                return StackVerdict(
                    allowed=True, decided_by=entry.name, evaluated=evaluated, applied=True
                )
            continue

        if entry.flag == ControlFlag.REQUISITE:
            return StackVerdict(
                allowed=False, decided_by=entry.name, evaluated=evaluated, applied=True
            )
        if entry.flag == ControlFlag.REQUIRED:
            has_failed_required = True
        elif entry.flag == ControlFlag.OPTIONAL and only_entry:
            has_failed_required = True

    return StackVerdict(allowed=not has_failed_required, evaluated=evaluated, applied=applied)


def _applies(entry: StackEntry, scope: Scope, target: Optional[str]) -> bool:
    if not entry.projects and not entry.groups:
        return True
    if scope == Scope.PROJECT:
        return target in entry.projects
    if scope == Scope.GROUP:
        return target in entry.groups
    # restricted entries take part in scoped checks only
    return False


def _evaluate_entry(
    entry: StackEntry,
    context: RequestContext,
    scope: Scope,
    target: Optional[str],
    evaluated: List[str],
) -> Optional[bool]:
    """Return the entry's predicate result, or None when it abstains."""
    if not _applies(entry, scope, target):
        return None

    if entry.substack is not None:
        verdict = evaluate_stack(entry.substack, context, scope, target)
        evaluated.extend(f"{entry.name}/{name}" for name in verdict.evaluated)
        if not verdict.applied:
            return None
        return verdict.allowed

    module = entry.module
    if module is None or not module.supports(scope):
        return None

    evaluated.append(entry.name)
    try:
        if scope == Scope.PROJECT:
            return bool(module.is_project_allowed(context, target))
        if scope == Scope.GROUP:
            return bool(module.is_group_allowed(context, target))
        return bool(module.is_allowed(context))
    except Exception as e:
        logger.error(
            "policy_predicate_failed",
            entry=entry.name,
            scope=scope.value,
            target=target,
            request_id=context.request_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
