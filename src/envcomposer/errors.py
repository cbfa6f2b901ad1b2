"""Exception hierarchy for descriptor loading and environment composition.

Every composition failure is fatal: the composer never returns a partial
environment, and the CLI reports the error and exits without starting a
shell. The operator fixes the descriptor (update a hash, broaden the unfree
policy, substitute a capability) and re-runs.
"""

from __future__ import annotations


class EnvComposerError(Exception):
    """Base class for all envcomposer errors."""


class ConfigError(EnvComposerError, ValueError):
    """Raised when composer configuration is invalid."""


class DescriptorError(EnvComposerError):
    """Raised when a descriptor file cannot be loaded or parsed."""


class DescriptorValidationError(DescriptorError):
    """Raised when a descriptor fails validation.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Descriptor validation failed with {len(errors)} error(s): {errors}")


class CompositionError(EnvComposerError):
    """Raised when an environment cannot be materialized."""


class UnresolvableCapability(CompositionError):
    """A declared capability cannot be located for the target platform."""

    def __init__(self, name: str, platform: str, reason: str) -> None:
        self.name = name
        self.platform = platform
        self.reason = reason
        super().__init__(f"Cannot resolve {name!r} for {platform}: {reason}")


class IntegrityMismatch(CompositionError):
    """The pinned toolchain's computed hash disagrees with the recorded hash."""

    def __init__(self, file: str, expected: str, actual: str, reason: str | None = None) -> None:
        self.file = file
        self.expected = expected
        self.actual = actual
        self.reason = reason
        message = f"Hash mismatch for pinned toolchain {file}:\n  specified: {expected}\n  got:       {actual}"
        if reason is not None:
            message += f"\n  reason:    {reason}"
        super().__init__(message)


class PolicyViolation(CompositionError):
    """A required package is unfree and not covered by the allow policy."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Package {name!r} has an unfree license and is not allowed; "
            f"add it to allow_unfree or set ENVCOMPOSER_ALLOW_UNFREE=1"
        )
