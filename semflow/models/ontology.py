"""Ontology graphs used by the rulesets guardrail.

An ontology describes the entity types (nodes) and relationships (edges) that
facts extracted from a model response are expected to follow. It is rendered
to a JSON Schema that the fact-extraction function is asked to fill.
"""

from typing import Any

from pydantic import BaseModel, Field

# ontology property types -> JSON Schema types
PROPERTY_TYPES: dict[str, dict[str, str]] = {
    "string": {"type": "string"},
    "text": {"type": "string"},
    "integer": {"type": "integer"},
    "int": {"type": "integer"},
    "float": {"type": "number"},
    "number": {"type": "number"},
    "decimal": {"type": "number"},
    "boolean": {"type": "boolean"},
    "bool": {"type": "boolean"},
    "date": {"type": "string", "format": "date"},
    "datetime": {"type": "string", "format": "date-time"},
}


class OntologyProperty(BaseModel):
    """A typed property on a node or edge."""

    name: str
    type: str = "string"
    description: str | None = None
    required: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        schema = dict(PROPERTY_TYPES.get(self.type.lower(), {"type": "string"}))
        if self.description:
            schema["description"] = self.description
        return schema


class OntologyNode(BaseModel):
    """An entity type, e.g. ``Person`` or ``Transaction``."""

    label: str
    description: str | None = None
    properties: list[OntologyProperty] = Field(default_factory=list)


class OntologyEdge(BaseModel):
    """A relationship type between two node labels."""

    label: str
    source: str
    target: str
    properties: list[OntologyProperty] = Field(default_factory=list)


def _object_schema(properties: list[OntologyProperty], description: str | None = None) -> dict:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {p.name: p.to_json_schema() for p in properties},
    }
    required = [p.name for p in properties if p.required]
    if required:
        schema["required"] = required
    if description:
        schema["description"] = description
    return schema


class OntologyGraph(BaseModel):
    nodes: list[OntologyNode] = Field(default_factory=list)
    edges: list[OntologyEdge] = Field(default_factory=list)

    def to_json_schema(self) -> dict[str, Any]:
        """Render the ontology as an object schema.

        One array property per node label holds instances of that entity;
        ``relationships`` holds edge instances tagged with their label.
        """
        properties: dict[str, Any] = {}
        for node in self.nodes:
            properties[node.label] = {
                "type": "array",
                "items": _object_schema(node.properties, node.description),
            }
        if self.edges:
            variants = []
            for edge in self.edges:
                item = _object_schema(edge.properties)
                item["properties"]["type"] = {"type": "string", "const": edge.label}
                item["properties"]["source"] = {
                    "type": "string",
                    "description": f"identifier of the {edge.source}",
                }
                item["properties"]["target"] = {
                    "type": "string",
                    "description": f"identifier of the {edge.target}",
                }
                item["required"] = sorted({"type", "source", "target", *item.get("required", [])})
                variants.append(item)
            properties["relationships"] = {
                "type": "array",
                "items": {"anyOf": variants} if len(variants) > 1 else variants[0],
            }
        return {"type": "object", "properties": properties}


class Ruleset(BaseModel):
    """A rules-engine ruleset validated against facts shaped by ``ontology``."""

    id: str
    name: str
    ontology: OntologyGraph
