"""
Custom exceptions for the authorization framework.
"""

from typing import Dict, Optional


class PolicyFrameworkError(Exception):
    """Base exception for all authorization framework errors."""
    pass


class PolicyModuleNotFoundError(PolicyFrameworkError):
    """Configured module name does not resolve to an artifact in the plugin directory."""
    pass


class InvalidPolicyModuleError(PolicyFrameworkError):
    """Artifact resolves but does not satisfy the PolicyModule contract."""
    pass


class PolicyModuleLoadError(PolicyFrameworkError):
    """Module load() returned failure, raised, or timed out."""
    pass


class StackBuildError(PolicyFrameworkError):
    """A mandatory entry's module failed to load, the stack cannot be applied."""

    def __init__(self, message: str, entries: Optional[Dict[str, str]] = None):
        super().__init__(message)
        # entry key -> failure reason
        self.entries = dict(entries or {})


class WatcherUnavailableError(PolicyFrameworkError):
    """Filesystem notifications for the plugin directory could not be established."""
    pass
