"""Unfree-package policy.

The policy only gates which capabilities may be included. It is a resolver
setting, not an environment variable, so changing it never alters the
variables of a composed environment.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .errors import PolicyViolation
from .registry import ResolvedCapability


@dataclass(frozen=True)
class UnfreePolicy:
    """Allow predicate for license-restricted packages.

    Attributes:
        allowed: Package names allowed despite an unfree license. A name
            matches either the full attribute path or its last segment.
        allow_all: Allow every unfree package.
    """

    allowed: frozenset[str] = frozenset()
    allow_all: bool = False

    @classmethod
    def from_names(cls, names: Iterable[str], *, allow_all: bool = False) -> UnfreePolicy:
        return cls(allowed=frozenset(names), allow_all=allow_all)

    def allows(self, capability: ResolvedCapability) -> bool:
        if not capability.unfree or self.allow_all:
            return True
        leaf = capability.name.rsplit(".", 1)[-1]
        return capability.name in self.allowed or leaf in self.allowed

    def check(self, capability: ResolvedCapability) -> None:
        """Raise PolicyViolation if ``capability`` is not allowed."""
        if not self.allows(capability):
            raise PolicyViolation(capability.name)

    def to_manifest_dict(self) -> dict[str, Any]:
        return {"allowed": sorted(self.allowed), "allow_all": self.allow_all}
