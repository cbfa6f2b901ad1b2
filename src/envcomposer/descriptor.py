"""Descriptor models and loaders.

A descriptor is a static, versioned YAML or JSON file declaring a free-text
``description``, named external ``inputs`` and the ``shells`` it produces,
keyed by platform identifier and then by variant name.
"""

from __future__ import annotations

import json
import re
from collections.abc import Hashable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import DescriptorError, DescriptorValidationError, UnresolvableCapability

DEFAULT_DESCRIPTOR_PATH = Path("devenv.yaml")
DEFAULT_VARIANT = "default"

_ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_ENV_KEYS = frozenset({"PATH"})


class _DescriptorBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class InputRef(_DescriptorBase):
    url: str = Field(..., min_length=1)
    # nested input name -> top-level input whose pinned version it reuses
    follows: dict[str, str] = Field(default_factory=dict)


class CapabilityRef(_DescriptorBase):
    name: str = Field(..., min_length=1)
    input: str | None = None
    extensions: tuple[str, ...] = ()
    executables: tuple[str, ...] = ()

    @property
    def attr_leaf(self) -> str:
        """Return the last attribute segment (``pkgsCross.avr.buildPackages.gcc`` -> ``gcc``)."""
        return self.name.rsplit(".", 1)[-1]


class PinnedToolchainRef(_DescriptorBase):
    input: str | None = None
    file: str = Field(..., min_length=1)
    sha256: str = Field(..., min_length=1)


class ShellSpec(_DescriptorBase):
    capabilities: tuple[CapabilityRef, ...] = ()
    pinned_toolchains: tuple[PinnedToolchainRef, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    allow_unfree: tuple[str, ...] = ()
    path_prefix: str | None = None

    @field_validator("env")
    @classmethod
    def _check_env_keys(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            if not _ENV_KEY_PATTERN.match(key):
                raise ValueError(f"env key {key!r} is not a valid variable name")
            if key in _RESERVED_ENV_KEYS:
                raise ValueError(f"env key {key!r} is managed by the composer and cannot be overridden")
        return value

    @field_validator("path_prefix")
    @classmethod
    def _check_path_prefix(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("path_prefix must be a non-empty path when set")
        return value

    def unique_capabilities(self) -> tuple[CapabilityRef, ...]:
        """Return capabilities with duplicate names collapsed, first occurrence kept."""
        seen: set[str] = set()
        unique: list[CapabilityRef] = []
        for capability in self.capabilities:
            if capability.name in seen:
                continue
            seen.add(capability.name)
            unique.append(capability)
        return tuple(unique)


class Descriptor(_DescriptorBase):
    schema_version: int = Field(1, ge=1)
    description: str = ""
    inputs: dict[str, InputRef] = Field(default_factory=dict)
    shells: dict[str, dict[str, ShellSpec]]

    @model_validator(mode="after")
    def _check_references(self) -> Descriptor:
        errors = _cross_reference_errors(self)
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def platforms(self) -> list[str]:
        return sorted(self.shells)

    def variants(self, platform: str) -> list[str]:
        return sorted(self.shells.get(platform, {}))

    def select(self, platform: str, variant: str = DEFAULT_VARIANT) -> ShellSpec:
        """Return the shell declared for ``platform`` and ``variant``.

        Raises:
            UnresolvableCapability: If the descriptor declares no such shell.
        """
        by_variant = self.shells.get(platform)
        if by_variant is None:
            known = ", ".join(self.platforms()) or "none"
            raise UnresolvableCapability(f"shells.{platform}", platform, f"no shells for this platform (declared: {known})")
        shell = by_variant.get(variant)
        if shell is None:
            known = ", ".join(sorted(by_variant)) or "none"
            raise UnresolvableCapability(f"shells.{platform}.{variant}", platform, f"unknown variant (declared: {known})")
        return shell


def _cross_reference_errors(descriptor: Descriptor) -> list[str]:
    errors: list[str] = []
    declared = set(descriptor.inputs)

    for name, ref in sorted(descriptor.inputs.items()):
        for nested, target in sorted(ref.follows.items()):
            if target == name:
                errors.append(f"inputs.{name}.follows.{nested} cannot follow its own input")
            elif target not in declared:
                errors.append(f"inputs.{name}.follows.{nested} follows undeclared input {target!r}")

    for platform, by_variant in sorted(descriptor.shells.items()):
        for variant, shell in sorted(by_variant.items()):
            where = f"shells.{platform}.{variant}"
            for capability in shell.capabilities:
                if capability.input is not None and capability.input not in declared:
                    errors.append(f"{where}: capability {capability.name!r} uses undeclared input {capability.input!r}")
            for pinned in shell.pinned_toolchains:
                if pinned.input is not None and pinned.input not in declared:
                    errors.append(f"{where}: pinned toolchain {pinned.file!r} uses undeclared input {pinned.input!r}")
    return errors


DESCRIPTOR_SCHEMA = Descriptor.model_json_schema()

_YAML_MERGE_TAG = "tag:yaml.org,2002:merge"


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects a key repeated within one mapping."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            if key_node.tag == _YAML_MERGE_TAG:
                continue
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key, Hashable):
                if key in seen:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"found duplicate key {key!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _unique_json_object(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise DescriptorError(f"Duplicate key {key!r} in JSON descriptor")
        result[key] = value
    return result


def load_descriptor(data: dict[str, Any]) -> Descriptor:
    """Validate and load a Descriptor from a dictionary.

    Raises:
        DescriptorValidationError: If the data fails validation.
    """
    try:
        return Descriptor.model_validate(data)
    except ValidationError as exc:
        raise DescriptorValidationError(_format_validation_errors(exc)) from exc


def read_descriptor_data(path: Path | str) -> dict[str, Any]:
    """Read the raw mapping from a YAML or JSON descriptor file."""
    path = Path(path)
    if not path.exists():
        raise DescriptorError(f"Descriptor file not found: {path}")

    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DescriptorError(f"Failed to read descriptor {path}: {exc}") from exc

    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.load(text, Loader=_UniqueKeyLoader)
        elif suffix == ".json":
            data = json.loads(text, object_pairs_hook=_unique_json_object)
        else:
            raise DescriptorError(f"Unsupported descriptor extension: {suffix}. Use .yaml, .yml, or .json")
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Invalid YAML in descriptor {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise DescriptorError(f"Invalid JSON in descriptor {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise DescriptorError(f"Descriptor file must contain a mapping, got {type(data).__name__}")
    return data


def load_descriptor_from_file(path: Path | str) -> Descriptor:
    """Load and validate a Descriptor from a YAML or JSON file.

    Raises:
        DescriptorError: If the file is missing, unreadable or not a mapping.
        DescriptorValidationError: If the contents fail validation.
    """
    return load_descriptor(read_descriptor_data(path))


def validate_against_json_schema(data: dict[str, Any]) -> list[str]:
    """Validate raw descriptor data against the Descriptor JSON Schema.

    Returns:
        List of validation error messages (empty if valid).
    """
    from jsonschema import Draft202012Validator

    validator = Draft202012Validator(DESCRIPTOR_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        errors.append(f"{path}: {error.message}")
    return errors


def validate_strict(data: dict[str, Any]) -> Descriptor:
    """Validate a descriptor with JSON Schema and pydantic together.

    Schema errors and model errors are reported in a single exception so the
    operator sees every problem at once.

    Raises:
        DescriptorValidationError: If either validation step fails.
    """
    errors = validate_against_json_schema(data)

    descriptor: Descriptor | None = None
    try:
        descriptor = load_descriptor(data)
    except DescriptorValidationError as exc:
        errors.extend(exc.errors)

    if errors or descriptor is None:
        raise DescriptorValidationError(errors)
    return descriptor


def _format_validation_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "(root)"
        messages.append(f"{location}: {error['msg']}")
    return messages
