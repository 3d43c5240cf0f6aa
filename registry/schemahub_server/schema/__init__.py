"""
Schema module for SchemaHub.

This module provides the format-agnostic schema model, including:
- Type definitions (FieldDescriptor, FieldModel, SchemaRecord, SchemaGroup)
- The analyzer capability table that turns raw definitions into field models
- Compatibility checking for schema evolution

Invariants:
    - Field position is never significant for comparison
    - Analyzers are the only code that understands schema syntax
    - The compatibility checker is a pure function

How to change safely:
    - Add formats by registering analyzers, not by editing the checker
    - Cover every new rule in the compatibility matrix tests
"""

from .analyzers import AnalyzerTable, FieldModelAnalyzer, analyze_avro, analyze_json_schema
from .compat import (
    Baseline,
    ChangeKind,
    CompatibilityResult,
    Violation,
    check_compatibility,
)
from .types import (
    CompatibilityMode,
    FieldDescriptor,
    FieldModel,
    SchemaDraft,
    SchemaFormat,
    SchemaGroup,
    SchemaRecord,
    content_hash,
    field,
)

__all__ = [
    # Types
    "CompatibilityMode",
    "FieldDescriptor",
    "FieldModel",
    "SchemaDraft",
    "SchemaFormat",
    "SchemaGroup",
    "SchemaRecord",
    "content_hash",
    "field",
    # Analyzers
    "AnalyzerTable",
    "FieldModelAnalyzer",
    "analyze_avro",
    "analyze_json_schema",
    # Compatibility
    "Baseline",
    "ChangeKind",
    "CompatibilityResult",
    "Violation",
    "check_compatibility",
]
