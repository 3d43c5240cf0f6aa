"""
Schema compatibility checking for the SchemaHub registry.

This module compares a candidate FieldModel against prior versions of a
subject under a CompatibilityMode. Fields are matched by name; position is
ignored.

Rules per baseline B and candidate C:
    - Field added in C:
        BACKWARD: safe only if optional or defaulted
        FORWARD: safe only if optional and defaulted
    - Field removed from C:
        BACKWARD: safe only if the removed field was optional or defaulted
        FORWARD: always safe
    - Field type changed: breaking in every mode except NONE
    - Rename: judged as a removal plus an addition

Invariants:
    - NONE accepts everything
    - Non-transitive modes compare against the latest baseline only
    - Transitive modes compare against every baseline supplied
    - Violations are aggregated across all baselines, never fail-fast
    - The check is deterministic and side-effect free

How to change safely:
    - Add a ChangeKind for every new rule so reasons stay machine-readable
    - Keep violation ordering stable (version, field, rule)

Example:
    >>> result = check_compatibility(candidate, [Baseline(1, v1)], CompatibilityMode.BACKWARD)
    >>> if not result.compatible:
    ...     for v in result.violations:
    ...         print(v)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import IncompatibleSchemaError
from .types import CompatibilityMode, FieldDescriptor, FieldModel

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Field-level rules a candidate schema can violate."""

    FIELD_TYPE_CHANGED = "FIELD_TYPE_CHANGED"
    # BACKWARD: new readers cannot fill a new field missing from old data
    FIELD_ADDED_WITHOUT_DEFAULT = "FIELD_ADDED_WITHOUT_DEFAULT"
    # BACKWARD: new readers lose a field old data relies on
    REQUIRED_FIELD_REMOVED = "REQUIRED_FIELD_REMOVED"
    # FORWARD: old readers cannot safely skip a new field
    FIELD_ADDED_BREAKS_OLD_READERS = "FIELD_ADDED_BREAKS_OLD_READERS"


@dataclass(frozen=True)
class Baseline:
    """A prior version of the subject to compare against."""

    version: int
    model: FieldModel


@dataclass(frozen=True)
class Violation:
    """One (baseline version, field, rule) violation.

    Attributes:
        version: Baseline version the candidate conflicts with
        field: Name of the offending field
        rule: The violated rule
        message: Human-readable description
        old_value: Baseline type/descriptor (if applicable)
        new_value: Candidate type/descriptor (if applicable)
    """

    version: int
    field: str
    rule: ChangeKind
    message: str
    old_value: Any = None
    new_value: Any = None

    def sort_key(self) -> tuple[int, str, str]:
        return (self.version, self.field, self.rule.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "field": self.field,
            "rule": self.rule.value,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"[v{self.version}] {self.rule.value}: {self.field} - {self.message}"


@dataclass
class CompatibilityResult:
    """Outcome of a compatibility check.

    Attributes:
        mode: Mode the check ran under
        violations: All violations found, sorted by (version, field, rule)
        checked_versions: Baseline versions actually compared
    """

    mode: CompatibilityMode
    violations: list[Violation] = field(default_factory=list)
    checked_versions: list[int] = field(default_factory=list)

    @property
    def compatible(self) -> bool:
        return not self.violations

    def violations_for(self, version: int) -> list[Violation]:
        return [v for v in self.violations if v.version == version]

    def raise_for_incompatible(self, subject: str) -> None:
        """Raise IncompatibleSchemaError if any violation was found."""
        if self.violations:
            raise IncompatibleSchemaError(subject, self.violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_compatible": self.compatible,
            "mode": self.mode.value,
            "checked_versions": list(self.checked_versions),
            "reasons": [v.to_dict() for v in self.violations],
        }


def check_compatibility(
    candidate: FieldModel,
    baselines: Sequence[Baseline],
    mode: CompatibilityMode,
) -> CompatibilityResult:
    """Check a candidate schema against prior versions.

    Args:
        candidate: Field model of the schema being registered
        baselines: Prior versions, in ascending version order
        mode: Compatibility policy to enforce

    Returns:
        CompatibilityResult carrying every violation found
    """
    result = CompatibilityResult(mode=mode)
    if mode is CompatibilityMode.NONE or not baselines:
        return result
    if candidate.is_opaque:
        return result

    ordered = sorted(baselines, key=lambda b: b.version)
    comparison_set = ordered if mode.is_transitive else ordered[-1:]

    seen: set[tuple[int, str, str]] = set()
    for baseline in comparison_set:
        if baseline.model.is_opaque:
            continue
        result.checked_versions.append(baseline.version)
        for violation in _diff(baseline, candidate, mode):
            key = violation.sort_key()
            if key not in seen:
                seen.add(key)
                result.violations.append(violation)

    result.violations.sort(key=Violation.sort_key)
    if result.violations:
        logger.debug(
            f"Compatibility check ({mode.value}) found {len(result.violations)} violation(s)"
        )
    return result


def _diff(
    baseline: Baseline,
    candidate: FieldModel,
    mode: CompatibilityMode,
) -> list[Violation]:
    """Compute the violations of one candidate against one baseline."""
    violations: list[Violation] = []
    old_fields = baseline.model.by_name()
    new_fields = candidate.by_name()

    for name, old in old_fields.items():
        new = new_fields.get(name)
        if new is None:
            violations.extend(_check_removed(baseline.version, old, mode))
        elif old.type != new.type:
            violations.append(Violation(
                version=baseline.version,
                field=name,
                rule=ChangeKind.FIELD_TYPE_CHANGED,
                message=f"Field type changed from '{old.type}' to '{new.type}'",
                old_value=old.type,
                new_value=new.type,
            ))

    for name, new in new_fields.items():
        if name not in old_fields:
            violations.extend(_check_added(baseline.version, new, mode))

    return violations


def _check_added(version: int, new: FieldDescriptor, mode: CompatibilityMode) -> list[Violation]:
    violations: list[Violation] = []
    if mode.checks_backward and not new.tolerates_absence:
        violations.append(Violation(
            version=version,
            field=new.name,
            rule=ChangeKind.FIELD_ADDED_WITHOUT_DEFAULT,
            message=f"Field '{new.name}' added as required with no default",
            new_value=new.type,
        ))
    if mode.checks_forward and not (new.optional and new.has_default):
        violations.append(Violation(
            version=version,
            field=new.name,
            rule=ChangeKind.FIELD_ADDED_BREAKS_OLD_READERS,
            message=f"Field '{new.name}' added without being optional with a default",
            new_value=new.type,
        ))
    return violations


def _check_removed(version: int, old: FieldDescriptor, mode: CompatibilityMode) -> list[Violation]:
    if mode.checks_backward and not old.tolerates_absence:
        return [Violation(
            version=version,
            field=old.name,
            rule=ChangeKind.REQUIRED_FIELD_REMOVED,
            message=f"Required field '{old.name}' with no default was removed",
            old_value=old.type,
        )]
    return []
