"""
Flattening of JSON Schemas embedded in an OpenAPI document.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import unquote
from loguru import logger

from .errors import RefResolutionError


COMPOSITE_KEYWORDS = ("allOf", "anyOf", "oneOf")
DEFAULT_MAX_DEPTH = 32


def resolve_pointer(document: Dict[str, Any], ref: str) -> Any:
    """
    Follow a local JSON pointer such as ``#/components/schemas/Pet``.

    Raises:
        RefResolutionError: If the pointer is external or does not resolve
    """
    if not isinstance(ref, str) or not ref.startswith("#"):
        raise RefResolutionError(str(ref))

    current: Any = document
    for raw_part in ref[1:].split("/"):
        if raw_part == "":
            continue
        part = unquote(raw_part).replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise RefResolutionError(ref)
    return current


class SchemaResolver:
    """Resolves $ref and composite keywords into flat schemas.

    ``allOf``, ``anyOf`` and ``oneOf`` branches are all merged into a single
    object schema; on a property name collision the later branch wins.
    Recursion is bounded by ``max_depth`` and a reference already being
    expanded on the current branch resolves to an empty schema, so
    self-referential documents terminate.
    """

    def __init__(self, document: Dict[str, Any], max_depth: int = DEFAULT_MAX_DEPTH):
        self.document = document or {}
        self.max_depth = max_depth

    def resolve(self, schema: Any) -> Dict[str, Any]:
        return self._resolve(schema, 0, [])

    def resolve_ref(self, ref: str) -> Optional[Any]:
        """Dereference a pointer without flattening; None if it does not resolve."""
        try:
            return resolve_pointer(self.document, ref)
        except RefResolutionError as e:
            logger.debug(str(e))
            return None

    def _resolve(self, schema: Any, depth: int, ref_stack: List[str]) -> Dict[str, Any]:
        if not isinstance(schema, dict) or not schema:
            return {}
        if depth > self.max_depth:
            logger.debug(f"Schema nesting deeper than {self.max_depth}, truncating")
            return {}

        if "$ref" in schema:
            ref = schema["$ref"]
            if ref in ref_stack:
                logger.debug(f"Cyclic reference {ref}, truncating")
                return {}
            target = self.resolve_ref(ref)
            if target is None:
                return {}
            return self._resolve(target, depth + 1, ref_stack + [ref])

        if any(keyword in schema for keyword in COMPOSITE_KEYWORDS):
            return self._merge_composite(schema, depth, ref_stack)

        if schema.get("type") == "array" and "items" in schema:
            result = dict(schema)
            result["items"] = self._resolve(schema["items"], depth + 1, ref_stack)
            return result

        if schema.get("type") == "object" or "properties" in schema:
            result = dict(schema)
            result["type"] = "object"
            result["properties"] = {
                name: self._resolve(prop, depth + 1, ref_stack)
                for name, prop in (schema.get("properties") or {}).items()
            }
            if isinstance(schema.get("additionalProperties"), dict):
                result["additionalProperties"] = self._resolve(
                    schema["additionalProperties"], depth + 1, ref_stack)
            return result

        return dict(schema)

    def _merge_composite(self, schema: Dict[str, Any], depth: int, ref_stack: List[str]) -> Dict[str, Any]:
        combined: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}
        if schema.get("description"):
            combined["description"] = schema["description"]

        branches: List[Any] = []
        for keyword in COMPOSITE_KEYWORDS:
            branches.extend(schema.get(keyword) or [])
        # Sibling properties declared next to the composite keywords count as one more branch.
        if "properties" in schema:
            branches.append({
                "type": "object",
                "properties": schema["properties"],
                "required": schema.get("required", []),
            })

        for branch in branches:
            resolved = self._resolve(branch, depth + 1, ref_stack)
            combined["properties"].update(resolved.get("properties") or {})
            for name in resolved.get("required") or []:
                if name not in combined["required"]:
                    combined["required"].append(name)

        if not combined["required"]:
            del combined["required"]
        return combined


def resolve_schema(schema: Any, document: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten ``schema`` against ``document`` in one call."""
    return SchemaResolver(document).resolve(schema)
