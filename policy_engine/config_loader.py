"""
Configuration loader for the authorization framework.

Loads the ``authorization`` section of a YAML file and returns a validated
FrameworkConfig: where the policy modules live, how the stack is ordered,
what to answer when no stack is available, and the hot-reload tuning knobs.

Note on default_decision: the framework is fail-open by default. When no
stack has been built yet (fresh deployment, broken configuration, missing
plugin directory) or the framework has been stopped, every check returns
``allow``. This keeps operators from being locked out of a new instance;
set ``default_decision: deny`` to trade that availability for strict
security-by-default.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from policy_engine.models import ControlFlag


class StackEntryConfig(BaseModel):
    """
    Configuration for one entry of the policy stack.

    An entry either references a policy module by name or holds a nested
    stack of further entries evaluated as one unit.
    """

    name: str = Field(..., min_length=1, description="Module name (file or package in the plugin directory)")
    flag: ControlFlag = Field(..., description="REQUIRED, REQUISITE, SUFFICIENT or OPTIONAL")
    settings: Dict[str, Any] = Field(
        default_factory=dict,
        description="Module-specific settings passed to load()",
    )
    projects: List[str] = Field(
        default_factory=list,
        description="Restrict the entry to project checks on these projects",
    )
    groups: List[str] = Field(
        default_factory=list,
        description="Restrict the entry to group checks on these groups",
    )
    stack: Optional[List["StackEntryConfig"]] = Field(
        None, description="Nested entries; makes this entry a sub-stack"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _normalize_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("flag"), str):
            data = dict(data)
            data["flag"] = data["flag"].strip().upper()
        return data

    @property
    def is_stack(self) -> bool:
        return self.stack is not None


StackEntryConfig.model_rebuild()


class ModuleReference(BaseModel):
    """A module entry flattened out of the stack configuration for loading."""

    key: str = Field(..., description="Position of the entry in the stack tree, e.g. '2' or '1.0'")
    name: str
    settings: Dict[str, Any] = Field(default_factory=dict)


class FrameworkConfig(BaseModel):
    """Configuration of the authorization framework."""

    plugin_directory: Optional[str] = Field(
        None,
        description="Directory holding policy modules. None disables authorization (default decision).",
    )
    default_decision: Literal["allow", "deny"] = Field(
        "allow",
        description="Answer when no stack is available (fail-open by default)",
    )
    watchdog: bool = Field(True, description="Reload automatically on plugin directory changes")
    debounce_seconds: float = Field(2.0, ge=0, description="Quiet period before a watcher-triggered reload")
    retry_interval_seconds: float = Field(
        5.0, gt=0, description="Polling interval while the plugin directory is unavailable"
    )
    load_timeout_seconds: float = Field(10.0, gt=0, description="Upper bound for a module's load()")
    stack: List[StackEntryConfig] = Field(default_factory=list, description="Ordered policy stack")

    model_config = ConfigDict(frozen=True)

    @property
    def default_allows(self) -> bool:
        return self.default_decision == "allow"


def iter_module_references(
    entries: List[StackEntryConfig], prefix: str = ""
) -> Iterator[ModuleReference]:
    """
    Walk the stack configuration depth-first, yielding module entries.

    Sub-stack entries are not modules themselves; their children are
    yielded with keys extending the sub-stack's key.
    """
    for index, entry in enumerate(entries):
        key = f"{prefix}{index}"
        if entry.is_stack:
            yield from iter_module_references(entry.stack, prefix=f"{key}.")
        else:
            yield ModuleReference(key=key, name=entry.name, settings=dict(entry.settings))


def parse_framework_config(data: Dict[str, Any]) -> FrameworkConfig:
    """
    Validate an already-parsed ``authorization`` section.

    Raises:
        ValueError: If the section is not a dictionary or fails validation
    """
    if not isinstance(data, dict):
        raise ValueError(f"'authorization' must be a dictionary, got {type(data)}")

    stack_data = data.get("stack", [])
    if not isinstance(stack_data, list):
        raise ValueError(f"'stack' must be a list, got {type(stack_data)}")

    try:
        return FrameworkConfig(**data)
    except Exception as e:
        raise ValueError(f"Invalid authorization configuration: {e}") from e


def load_framework_config(config_path: str) -> FrameworkConfig:
    """
    Load authorization configuration from a YAML file.

    Reads the YAML file, extracts the 'authorization' section, and returns
    a validated FrameworkConfig. A relative plugin_directory is resolved
    against the directory of the configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        FrameworkConfig for the framework

    Raises:
        FileNotFoundError: If the config file doesn't exist
        yaml.YAMLError: If the YAML file is invalid
        ValueError: If the config structure is invalid (missing 'authorization' key, etc.)
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a YAML dictionary, got {type(data)}")

    if "authorization" not in data:
        raise ValueError("Config file must contain an 'authorization' key")

    section = data["authorization"]
    if isinstance(section, dict) and section.get("plugin_directory"):
        plugin_dir = Path(section["plugin_directory"])
        if not plugin_dir.is_absolute():
            section = dict(section)
            section["plugin_directory"] = str((config_file.parent / plugin_dir).resolve())

    return parse_framework_config(section)
