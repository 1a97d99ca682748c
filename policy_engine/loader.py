"""
Module Loader - Discovers, imports, validates and loads policy modules.

Each configured module reference is resolved to a Python file (or package)
inside the plugin directory, imported under a build-unique name, checked
against the PolicyModule contract and given its settings through load().
References are processed independently: one broken module is recorded as
a failure and never prevents the others from loading.
"""

import importlib.util
import inspect
import re
import sys
import threading
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Iterable, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from common.logging import get_logger
from policy_engine.config_loader import ModuleReference
from policy_engine.exceptions import (
    InvalidPolicyModuleError,
    PolicyFrameworkError,
    PolicyModuleLoadError,
    PolicyModuleNotFoundError,
)
from policy_engine.interfaces import PolicyModule
from policy_engine.models import ModuleState

logger = get_logger(__name__)

IMPORT_PREFIX = "authz_plugin_"
FACTORY_ATTRIBUTE = "policy_module"

_MODULE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_unload_lock = threading.Lock()


class LoadResult(BaseModel):
    """Outcome of loading one module reference: a LOADED module or a failure reason."""

    reference: ModuleReference
    module: Optional[PolicyModule] = None
    error: Optional[str] = Field(None, description="Failure reason when the module did not load")
    error_type: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.module is not None


def _call_with_timeout(func: Callable[..., Any], timeout: float, *args: Any) -> Any:
    """
    Run func in a daemon thread and wait at most timeout seconds for it.

    A call that overruns is abandoned: the thread cannot be killed, but it
    no longer holds up the rebuild nor process exit.
    """
    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = func(*args)
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=target, name="authz-module-load", daemon=True)
    worker.start()
    worker.join(timeout)

    if worker.is_alive():
        raise PolicyModuleLoadError(f"load() did not finish within {timeout}s")
    error = outcome.get("error")
    if error is not None:
        if not isinstance(error, Exception):
            raise PolicyModuleLoadError(
                f"load() aborted with {type(error).__name__}: {error}"
            ) from error
        raise error
    return outcome["value"]


class ModuleLoader:
    """
    Loads policy modules from a plugin directory.

    Usage:
        loader = ModuleLoader("/var/opengrok/plugins", load_timeout=10.0)
        results = loader.load_all(references, generation=3)
        for key, result in results.items():
            if not result.ok:
                print(key, result.error)
    """

    def __init__(self, directory: str, load_timeout: float = 10.0):
        """
        Initialize the loader.

        Args:
            directory: Plugin directory holding module files/packages
            load_timeout: Upper bound in seconds for each module's load()
        """
        self._directory = Path(directory)
        self._load_timeout = load_timeout

    @property
    def directory(self) -> Path:
        return self._directory

    def resolve(self, name: str) -> Path:
        """
        Find the code artifact for a module name.

        ``<dir>/<name>.py`` wins over a package ``<dir>/<name>/__init__.py``.

        Raises:
            PolicyModuleNotFoundError: If no artifact exists for the name
        """
        if not _MODULE_NAME.match(name):
            raise PolicyModuleNotFoundError(f"Invalid module name '{name}'")

        single_file = self._directory / f"{name}.py"
        if single_file.is_file():
            return single_file

        package_init = self._directory / name / "__init__.py"
        if package_init.is_file():
            return package_init

        raise PolicyModuleNotFoundError(
            f"Module '{name}' not found in plugin directory {self._directory}"
        )

    def load_all(
        self, references: Iterable[ModuleReference], generation: int = 0
    ) -> Dict[str, LoadResult]:
        """
        Load every referenced module, independently of each other.

        Args:
            references: Module references in stack order
            generation: Build number, used to keep imports of different builds apart

        Returns:
            Mapping from reference key to its LoadResult, in stack order
        """
        results: Dict[str, LoadResult] = {}
        for reference in references:
            results[reference.key] = self.load(reference, generation)
        return results

    def load(self, reference: ModuleReference, generation: int = 0) -> LoadResult:
        """
        Resolve, import, validate and load a single module.

        Never raises for module problems; the failure is recorded in the result.
        """
        import_name = f"{IMPORT_PREFIX}g{generation}_{reference.key.replace('.', '_')}_{reference.name}"
        module: Optional[PolicyModule] = None
        try:
            path = self.resolve(reference.name)
            source = self._import(path, import_name)
            module = self._instantiate(source, reference.name)
            self._load_settings(module, reference)
        except PolicyFrameworkError as e:
            if module is not None:
                module.state = ModuleState.FAILED
            _forget_import(import_name)
            logger.warning(
                "policy_module_load_failed",
                module_name=reference.name,
                entry=reference.key,
                generation=generation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return LoadResult(
                reference=reference,
                error=str(e),
                error_type=type(e).__name__,
            )

        logger.info(
            "policy_module_loaded",
            module_name=reference.name,
            entry=reference.key,
            generation=generation,
            capabilities=sorted(c.value for c in module.capabilities),
        )
        return LoadResult(reference=reference, module=module)

    def _import(self, path: Path, import_name: str) -> ModuleType:
        search_locations = [str(path.parent)] if path.name == "__init__.py" else None
        spec = importlib.util.spec_from_file_location(
            import_name, path, submodule_search_locations=search_locations
        )
        if spec is None or spec.loader is None:
            raise InvalidPolicyModuleError(f"Cannot create import spec for {path}")

        source = importlib.util.module_from_spec(spec)
        sys.modules[import_name] = source
        try:
            spec.loader.exec_module(source)
        except Exception as e:
            raise InvalidPolicyModuleError(
                f"Importing {path} failed: {type(e).__name__}: {e}"
            ) from e
        return source

    def _instantiate(self, source: ModuleType, name: str) -> PolicyModule:
        factory = getattr(source, FACTORY_ATTRIBUTE, None)
        if factory is None:
            factory = _find_module_class(source, name)

        try:
            module = factory()
        except Exception as e:
            raise InvalidPolicyModuleError(
                f"Instantiating module '{name}' failed: {type(e).__name__}: {e}"
            ) from e

        if not isinstance(module, PolicyModule):
            raise InvalidPolicyModuleError(
                f"Module '{name}' must produce a PolicyModule instance, got {type(module)}"
            )
        if not module.capabilities:
            raise InvalidPolicyModuleError(
                f"Module '{name}' implements none of is_allowed, "
                f"is_project_allowed, is_group_allowed"
            )

        try:
            module.name = name
        except AttributeError:
            # the module pins its own name through a read-only property
            pass
        return module

    def _load_settings(self, module: PolicyModule, reference: ModuleReference) -> None:
        missing = [key for key in module.required_settings if key not in reference.settings]
        if missing:
            raise PolicyModuleLoadError(
                f"Module '{reference.name}' is missing required settings: {', '.join(missing)}"
            )

        try:
            loaded = _call_with_timeout(module.load, self._load_timeout, dict(reference.settings))
        except PolicyModuleLoadError:
            raise
        except Exception as e:
            raise PolicyModuleLoadError(
                f"Module '{reference.name}' load() raised {type(e).__name__}: {e}"
            ) from e

        if loaded is False:
            raise PolicyModuleLoadError(f"Module '{reference.name}' load() reported failure")

        module.state = ModuleState.LOADED


def _find_module_class(source: ModuleType, name: str) -> Type[PolicyModule]:
    candidates = [
        obj
        for obj in vars(source).values()
        if inspect.isclass(obj)
        and issubclass(obj, PolicyModule)
        and obj is not PolicyModule
        and obj.__module__.split(".")[0] == source.__name__
        and not inspect.isabstract(obj)
    ]
    if not candidates:
        raise InvalidPolicyModuleError(f"Module '{name}' defines no PolicyModule subclass")
    if len(candidates) > 1:
        names = ", ".join(sorted(c.__name__ for c in candidates))
        raise InvalidPolicyModuleError(
            f"Module '{name}' defines several PolicyModule subclasses ({names}); "
            f"expose one through '{FACTORY_ATTRIBUTE}'"
        )
    return candidates[0]


def _forget_import(import_name: str) -> None:
    for loaded_name in list(sys.modules):
        if loaded_name == import_name or loaded_name.startswith(import_name + "."):
            del sys.modules[loaded_name]


def unload_module(module: PolicyModule) -> None:
    """
    Invoke a module's unload() hook exactly once and drop its import.

    Only LOADED modules are unloaded; calling this again is a no-op.
    Errors raised by the hook are logged, not propagated.
    """
    with _unload_lock:
        if module.state != ModuleState.LOADED:
            return
        module.state = ModuleState.UNLOADED

    try:
        module.unload()
        logger.info("policy_module_unloaded", module_name=module.name)
    except Exception as e:
        logger.error(
            "policy_module_unload_failed",
            module_name=module.name,
            error=str(e),
            error_type=type(e).__name__,
        )

    import_name = type(module).__module__.split(".")[0]
    if import_name.startswith(IMPORT_PREFIX):
        _forget_import(import_name)
