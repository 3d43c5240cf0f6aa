"""
Field model analyzers for the SchemaHub registry.

An analyzer turns a raw schema definition into a FieldModel. Analyzers are
injected into the SubjectManager as a capability table keyed by SchemaFormat;
the registry core never parses schema syntax itself.

This module ships reference analyzers for:
- Avro record schemas (JSON-encoded)
- JSON Schema objects (top-level "properties")

Formats with no registered analyzer (PROTOBUF by default) and OPAQUE are
stored unexamined and always pass compatibility checks.

Invariants:
    - Analyzers are pure: same bytes in, same model out
    - Analyzers raise SchemaParseError and nothing else on bad input
    - A union with "null" (Avro) or a type list with "null" (JSON Schema)
      makes a field optional

How to change safely:
    - Register new analyzers with AnalyzerTable.register()
    - Keep type tags stable; changing a tag reads as a type change
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..errors import SchemaParseError
from .types import FieldDescriptor, FieldModel, SchemaFormat

logger = logging.getLogger(__name__)

FieldModelAnalyzer = Callable[[bytes], FieldModel]


class AnalyzerTable:
    """Capability table mapping a SchemaFormat to its analyzer.

    Example:
        >>> table = AnalyzerTable.default()
        >>> model = table.analyze(b'{"type": "record", "name": "R", "fields": []}', SchemaFormat.AVRO)
    """

    def __init__(self, analyzers: Mapping[SchemaFormat, FieldModelAnalyzer] | None = None) -> None:
        self._analyzers: dict[SchemaFormat, FieldModelAnalyzer] = dict(analyzers or {})

    @classmethod
    def default(cls) -> AnalyzerTable:
        """Table with the built-in Avro and JSON Schema analyzers."""
        return cls({
            SchemaFormat.AVRO: analyze_avro,
            SchemaFormat.JSON: analyze_json_schema,
        })

    def register(self, schema_format: SchemaFormat, analyzer: FieldModelAnalyzer) -> None:
        if schema_format is SchemaFormat.OPAQUE:
            raise ValueError("OPAQUE schemas cannot have an analyzer")
        self._analyzers[schema_format] = analyzer

    def supports(self, schema_format: SchemaFormat) -> bool:
        return schema_format in self._analyzers

    def formats(self) -> list[SchemaFormat]:
        return sorted(self._analyzers, key=lambda f: f.value)

    def analyze(self, raw_definition: bytes, schema_format: SchemaFormat) -> FieldModel:
        """Analyze a raw definition into a FieldModel.

        Args:
            raw_definition: Definition bytes as submitted
            schema_format: Declared format

        Returns:
            FieldModel (opaque if the format has no analyzer)

        Raises:
            SchemaParseError: If the analyzer rejects the definition
        """
        analyzer = self._analyzers.get(schema_format)
        if analyzer is None:
            if schema_format is not SchemaFormat.OPAQUE:
                logger.info(
                    f"No analyzer for format {schema_format.value}, storing opaquely"
                )
            return FieldModel.opaque()

        model = analyzer(raw_definition)
        if model.format is not schema_format:
            model = FieldModel(schema_format, model.fields)
        return model


def _load_json(raw_definition: bytes, schema_format: SchemaFormat) -> Any:
    try:
        return json.loads(raw_definition.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaParseError(
            f"{schema_format.value} definition is not valid JSON: {e}",
            schema_format=schema_format.value,
        ) from e


# --- Avro ---


def _avro_type_tag(avro_type: Any) -> str:
    """Normalize an Avro type expression to a type tag."""
    if isinstance(avro_type, str):
        return avro_type
    if isinstance(avro_type, list):
        branches = [_avro_type_tag(t) for t in avro_type if t != "null"]
        if len(branches) == 1:
            return branches[0]
        return "union<" + "|".join(branches) + ">"
    if isinstance(avro_type, dict):
        kind = avro_type.get("type")
        if kind == "array":
            return f"array<{_avro_type_tag(avro_type.get('items'))}>"
        if kind == "map":
            return f"map<{_avro_type_tag(avro_type.get('values'))}>"
        if kind in ("record", "enum", "fixed"):
            return f"{kind}:{avro_type.get('name', '')}"
        if "logicalType" in avro_type:
            return f"{kind}:{avro_type['logicalType']}"
        return _avro_type_tag(kind)
    raise TypeError(f"unsupported Avro type expression {avro_type!r}")


def analyze_avro(raw_definition: bytes) -> FieldModel:
    """Analyze an Avro record schema.

    A field is optional when its type is a union containing "null".
    The presence of a "default" key marks it as defaulted.

    Raises:
        SchemaParseError: If the definition is not a valid Avro record
    """
    doc = _load_json(raw_definition, SchemaFormat.AVRO)
    if not isinstance(doc, dict) or doc.get("type") != "record":
        raise SchemaParseError(
            "Avro definition must be a record schema", schema_format="AVRO"
        )

    fields = []
    try:
        for entry in doc.get("fields", []):
            avro_type = entry["type"]
            optional = isinstance(avro_type, list) and "null" in avro_type
            fields.append(FieldDescriptor(
                name=entry["name"],
                type=_avro_type_tag(avro_type),
                optional=optional,
                has_default="default" in entry,
                default_value=entry.get("default"),
            ))
        return FieldModel(SchemaFormat.AVRO, tuple(fields))
    except (KeyError, TypeError, ValueError) as e:
        raise SchemaParseError(f"Invalid Avro field definition: {e}", schema_format="AVRO") from e


# --- JSON Schema ---


def _json_type_tag(prop: dict[str, Any]) -> tuple[str, bool]:
    """Normalize a JSON Schema property to (type tag, nullable)."""
    if "$ref" in prop:
        return f"ref:{prop['$ref']}", False
    if "enum" in prop and "type" not in prop:
        return "enum", False

    declared = prop.get("type")
    nullable = False
    if isinstance(declared, list):
        nullable = "null" in declared
        branches = sorted(t for t in declared if t != "null")
        declared = branches[0] if len(branches) == 1 else "union<" + "|".join(branches) + ">"
    if declared is None:
        return "any", nullable
    if declared == "array":
        items = prop.get("items", {})
        item_tag = _json_type_tag(items)[0] if isinstance(items, dict) else "any"
        return f"array<{item_tag}>", nullable
    return declared, nullable


def analyze_json_schema(raw_definition: bytes) -> FieldModel:
    """Analyze a JSON Schema object definition.

    Top-level properties become fields. A property is optional when it is
    not listed in "required" or when its type list includes "null".

    Raises:
        SchemaParseError: If the definition is not a JSON Schema object
    """
    doc = _load_json(raw_definition, SchemaFormat.JSON)
    if not isinstance(doc, dict):
        raise SchemaParseError("JSON Schema definition must be an object", schema_format="JSON")

    properties = doc.get("properties", {})
    if not isinstance(properties, dict):
        raise SchemaParseError("'properties' must be an object", schema_format="JSON")
    required = doc.get("required", [])
    if not isinstance(required, list) or not all(isinstance(n, str) for n in required):
        raise SchemaParseError("'required' must be a list of strings", schema_format="JSON")
    required = set(required)

    fields = []
    try:
        for name, prop in properties.items():
            tag, nullable = _json_type_tag(prop)
            fields.append(FieldDescriptor(
                name=name,
                type=tag,
                optional=nullable or name not in required,
                has_default="default" in prop,
                default_value=prop.get("default"),
            ))
        return FieldModel(SchemaFormat.JSON, tuple(fields))
    except (AttributeError, TypeError, ValueError) as e:
        raise SchemaParseError(f"Invalid JSON Schema property: {e}", schema_format="JSON") from e
