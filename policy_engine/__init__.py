"""
Policy Engine module - Pluggable, hot-reloadable authorization framework
"""

from policy_engine.config_loader import (
    FrameworkConfig,
    ModuleReference,
    StackEntryConfig,
    load_framework_config,
)
from policy_engine.evaluator import StackVerdict, evaluate_stack
from policy_engine.exceptions import (
    InvalidPolicyModuleError,
    PolicyFrameworkError,
    PolicyModuleLoadError,
    PolicyModuleNotFoundError,
    StackBuildError,
    WatcherUnavailableError,
)
from policy_engine.framework import AuthorizationFramework
from policy_engine.interfaces import PolicyModule
from policy_engine.loader import LoadResult, ModuleLoader
from policy_engine.models import (
    Capability,
    ControlFlag,
    Decision,
    DecisionOutcome,
    FrameworkState,
    ModuleState,
    ReloadResult,
    ReloadStatus,
    RequestContext,
    Scope,
)
from policy_engine.stack import PolicyStack, StackBuilder, StackEntry
from policy_engine.watcher import DirectoryWatcher

__all__ = [
    "PolicyModule",
    "RequestContext",
    "Decision",
    "DecisionOutcome",
    "ControlFlag",
    "Capability",
    "Scope",
    "ModuleState",
    "FrameworkState",
    "ReloadResult",
    "ReloadStatus",
    "FrameworkConfig",
    "StackEntryConfig",
    "ModuleReference",
    "load_framework_config",
    "ModuleLoader",
    "LoadResult",
    "StackBuilder",
    "StackEntry",
    "PolicyStack",
    "StackVerdict",
    "evaluate_stack",
    "DirectoryWatcher",
    "AuthorizationFramework",
    "PolicyFrameworkError",
    "PolicyModuleNotFoundError",
    "InvalidPolicyModuleError",
    "PolicyModuleLoadError",
    "StackBuildError",
    "WatcherUnavailableError",
]
