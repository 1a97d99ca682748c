"""
Tests for configuration loader.
"""

import tempfile
from pathlib import Path

import pytest
import yaml

from policy_engine.config_loader import (
    FrameworkConfig,
    StackEntryConfig,
    iter_module_references,
    load_framework_config,
    parse_framework_config,
)
from policy_engine.models import ControlFlag


def _write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(data, f)
        return f.name


class TestStackEntryConfig:
    """Test StackEntryConfig model."""

    def test_create_entry(self):
        """Test creating a module entry."""
        entry = StackEntryConfig(name="ldap", flag="REQUIRED", settings={"url": "ldap://x"})
        assert entry.name == "ldap"
        assert entry.flag == ControlFlag.REQUIRED
        assert entry.settings == {"url": "ldap://x"}
        assert entry.projects == []
        assert entry.groups == []
        assert not entry.is_stack

    def test_flag_is_case_insensitive(self):
        """Test that lower-case flags from YAML are accepted."""
        entry = StackEntryConfig(name="ldap", flag=" sufficient ")
        assert entry.flag == ControlFlag.SUFFICIENT

    def test_unknown_flag_rejected(self):
        """Test that an unknown control flag fails validation."""
        with pytest.raises(Exception):
            StackEntryConfig(name="ldap", flag="MANDATORY")

    def test_nested_stack(self):
        """Test an entry holding a sub-stack."""
        entry = StackEntryConfig(
            name="corporate",
            flag="REQUISITE",
            stack=[{"name": "a", "flag": "OPTIONAL"}, {"name": "b", "flag": "SUFFICIENT"}],
        )
        assert entry.is_stack
        assert [child.name for child in entry.stack] == ["a", "b"]


class TestFrameworkConfig:
    """Test FrameworkConfig defaults and validation."""

    def test_defaults(self):
        """Test the operational defaults."""
        config = FrameworkConfig()
        assert config.plugin_directory is None
        assert config.default_decision == "allow"
        assert config.default_allows is True
        assert config.watchdog is True
        assert config.debounce_seconds == 2.0
        assert config.load_timeout_seconds == 10.0
        assert config.stack == []

    def test_fail_closed(self):
        """Test configuring a deny default."""
        config = FrameworkConfig(default_decision="deny")
        assert config.default_allows is False

    def test_invalid_default_decision(self):
        """Test that only allow/deny are accepted."""
        with pytest.raises(Exception):
            FrameworkConfig(default_decision="maybe")

    def test_non_positive_timeout_rejected(self):
        """Test that the load timeout must be positive."""
        with pytest.raises(Exception):
            FrameworkConfig(load_timeout_seconds=0)


class TestModuleReferences:
    """Test flattening the stack configuration into module references."""

    def test_keys_follow_tree_positions(self):
        """Test that keys encode each module's position, depth-first."""
        entries = [
            StackEntryConfig(name="first", flag="REQUIRED"),
            StackEntryConfig(
                name="nested",
                flag="SUFFICIENT",
                stack=[
                    StackEntryConfig(name="inner_a", flag="REQUIRED"),
                    StackEntryConfig(name="inner_b", flag="OPTIONAL", settings={"x": 1}),
                ],
            ),
            StackEntryConfig(name="last", flag="OPTIONAL"),
        ]

        references = list(iter_module_references(entries))

        assert [(r.key, r.name) for r in references] == [
            ("0", "first"),
            ("1.0", "inner_a"),
            ("1.1", "inner_b"),
            ("2", "last"),
        ]
        assert references[2].settings == {"x": 1}

    def test_same_module_twice(self):
        """Test that a module referenced twice yields two references."""
        entries = [
            StackEntryConfig(name="whitelist", flag="SUFFICIENT", settings={"users": ["a"]}),
            StackEntryConfig(name="whitelist", flag="REQUIRED", settings={"users": ["b"]}),
        ]
        keys = [r.key for r in iter_module_references(entries)]
        assert keys == ["0", "1"]


class TestLoadFrameworkConfig:
    """Test load_framework_config function."""

    def test_load_valid_config(self):
        """Test loading a valid configuration file."""
        temp_path = _write_config(
            {
                "authorization": {
                    "plugin_directory": "/srv/plugins",
                    "default_decision": "deny",
                    "debounce_seconds": 0.5,
                    "stack": [
                        {"name": "whitelist", "flag": "sufficient", "settings": {"users": ["admin"]}},
                        {"name": "projects", "flag": "required", "projects": ["kernel"]},
                    ],
                }
            }
        )
        try:
            config = load_framework_config(temp_path)
            assert config.plugin_directory == "/srv/plugins"
            assert config.default_decision == "deny"
            assert config.debounce_seconds == 0.5
            assert len(config.stack) == 2
            assert config.stack[0].flag == ControlFlag.SUFFICIENT
            assert config.stack[1].projects == ["kernel"]
        finally:
            Path(temp_path).unlink()

    def test_relative_plugin_directory(self):
        """Test that a relative plugin directory resolves against the config file."""
        temp_path = _write_config({"authorization": {"plugin_directory": "plugins"}})
        try:
            config = load_framework_config(temp_path)
            expected = (Path(temp_path).parent / "plugins").resolve()
            assert config.plugin_directory == str(expected)
        finally:
            Path(temp_path).unlink()

    def test_load_config_missing_file(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_framework_config("/nonexistent/path/config.yaml")

    def test_load_config_invalid_yaml(self):
        """Test that invalid YAML raises YAMLError."""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("invalid: yaml: content: [")
            temp_path = f.name

        try:
            with pytest.raises(yaml.YAMLError):
                load_framework_config(temp_path)
        finally:
            Path(temp_path).unlink()

    def test_load_config_missing_section(self):
        """Test that a config without 'authorization' raises ValueError."""
        temp_path = _write_config({"other": {}})
        try:
            with pytest.raises(ValueError, match="authorization"):
                load_framework_config(temp_path)
        finally:
            Path(temp_path).unlink()

    def test_load_config_not_a_dict(self):
        """Test that a top-level list raises ValueError."""
        temp_path = _write_config(["a", "b"])
        try:
            with pytest.raises(ValueError, match="dictionary"):
                load_framework_config(temp_path)
        finally:
            Path(temp_path).unlink()

    def test_stack_must_be_list(self):
        """Test that a non-list stack raises ValueError."""
        with pytest.raises(ValueError, match="'stack' must be a list"):
            parse_framework_config({"stack": {"name": "x"}})

    def test_invalid_entry_raises_value_error(self):
        """Test that entry validation errors surface as ValueError."""
        with pytest.raises(ValueError, match="Invalid authorization configuration"):
            parse_framework_config({"stack": [{"name": "x"}]})
