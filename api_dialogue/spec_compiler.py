"""
Compilation of OpenAPI 3.x / Swagger 2.0 documents into tool descriptors.
"""

import re
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger

from .errors import CompileError
from .models import Endpoint, FieldSchema, InputSchema, ToolAnnotations, ToolDescriptor
from .schema_resolver import SchemaResolver


HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")
PARAMETER_LOCATIONS = ("path", "query", "header")
PARAMETER_SCHEMA_KEYS = ("type", "format", "enum", "items", "default", "minimum", "maximum", "pattern")


def tool_name_for(method: str, path: str, operation_id: Optional[str] = None) -> str:
    """operationId when present, otherwise METHOD_path with non-alphanumerics as underscores."""
    if isinstance(operation_id, str) and operation_id.strip():
        return operation_id.strip()
    return f"{method.upper()}_{re.sub(r'[^a-zA-Z0-9_]', '_', path)}"


class SpecCompiler:
    """Turns every path x method pair of a document into a ToolDescriptor."""

    def __init__(self, document: Dict[str, Any], base_url_override: Optional[str] = None):
        self.document = document if isinstance(document, dict) else {}
        self.resolver = SchemaResolver(self.document)
        self.base_url = str(base_url_override or self._safe_base_url()).rstrip("/")
        self.skipped: List[CompileError] = []

    def _safe_base_url(self) -> str:
        try:
            return self._determine_base_url()
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Could not determine base URL from document: {e}")
            return ""

    def _determine_base_url(self) -> str:
        servers = self.document.get("servers")
        if isinstance(servers, list) and servers and isinstance(servers[0], dict):
            server = servers[0]
            url = str(server.get("url") or "")
            variables = server.get("variables")
            if not isinstance(variables, dict):
                variables = {}
            for name, variable in variables.items():
                if isinstance(variable, dict) and "default" in variable:
                    url = url.replace(f"{{{name}}}", str(variable["default"]))
            return url

        if str(self.document.get("swagger", "")).startswith("2"):
            host = str(self.document.get("host") or "")
            base_path = str(self.document.get("basePath") or "")
            if not host:
                return base_path
            schemes = self.document.get("schemes")
            scheme = str(schemes[0]) if isinstance(schemes, list) and schemes else "https"
            return f"{scheme}://{host}{base_path}"

        return ""

    def compile(self) -> List[ToolDescriptor]:
        """
        Compile all operations in the document.

        Malformed operations are logged and skipped; this never raises.

        Returns:
            Tool descriptors in document order, unique by name
        """
        tools: Dict[str, ToolDescriptor] = {}
        self.skipped = []

        paths = self.document.get("paths")
        if not isinstance(paths, dict):
            logger.warning("Document has no 'paths' object; nothing to compile")
            return []

        for path, path_item in paths.items():
            if not isinstance(path_item, dict):
                self._skip(CompileError("*", str(path), "path item is not an object"))
                continue

            for method in HTTP_METHODS:
                if method not in path_item:
                    continue
                try:
                    tool = self._compile_operation(str(path), method, path_item[method], path_item)
                except CompileError as e:
                    self._skip(e)
                    continue
                except Exception as e:
                    self._skip(CompileError(method.upper(), str(path), f"unexpected error: {e}"))
                    continue

                if tool.name in tools:
                    logger.warning(f"Duplicate tool name '{tool.name}' at {method.upper()} {path}; last definition wins")
                tools[tool.name] = tool

        logger.info(f"Compiled {len(tools)} tools ({len(self.skipped)} operations skipped)")
        return list(tools.values())

    def _skip(self, error: CompileError) -> None:
        self.skipped.append(error)
        logger.warning(f"Skipping operation {error}")

    def _compile_operation(self, path: str, method: str, operation: Any,
                           path_item: Dict[str, Any]) -> ToolDescriptor:
        if not isinstance(operation, dict):
            raise CompileError(method.upper(), path, "operation is not an object")

        http_method = method.upper()
        name = tool_name_for(http_method, path, operation.get("operationId"))
        description = operation.get("summary") or operation.get("description") or "No description available"

        fields, body_params = self._collect_parameters(http_method, path, operation, path_item)
        self._merge_request_body(fields, operation, body_params)

        for placeholder in re.findall(r"\{([^}]+)\}", path):
            if placeholder not in fields:
                # Undeclared placeholders still have to be filled in before the call.
                fields[placeholder] = FieldSchema(placeholder, {"type": "string"}, True, "path")

        security = operation.get("security")
        if security is None:
            security = self.document.get("security") or []
        if not isinstance(security, list):
            raise CompileError(http_method, path, "security is not a list")

        tags = operation.get("tags") or []
        annotations = ToolAnnotations(
            method=http_method,
            path=path,
            tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
            deprecated=bool(operation.get("deprecated", False)),
            title=operation.get("summary") or "",
            read_only_hint=http_method in ("GET", "HEAD"),
            open_world_hint=False,
        )

        return ToolDescriptor(
            name=name,
            description=str(description),
            input_schema=InputSchema(list(fields.values())),
            endpoint=Endpoint(http_method, path, self.base_url),
            security=[item for item in security if isinstance(item, dict)],
            annotations=annotations,
        )

    def _resolve_parameter(self, param: Any) -> Optional[Dict[str, Any]]:
        if isinstance(param, dict) and "$ref" in param:
            param = self.resolver.resolve_ref(param["$ref"])
        if not isinstance(param, dict) or not param.get("name") or not param.get("in"):
            return None
        return param

    def _collect_parameters(self, method: str, path: str, operation: Dict[str, Any],
                            path_item: Dict[str, Any]) -> Tuple[Dict[str, FieldSchema], List[Dict[str, Any]]]:
        raw_params = []
        for source in (path_item.get("parameters"), operation.get("parameters")):
            if source is None:
                continue
            if not isinstance(source, list):
                raise CompileError(method, path, "parameters is not a list")
            raw_params.extend(source)

        # Operation-level parameters override path-level ones with the same name and location.
        merged: Dict[Tuple[str, str], Dict[str, Any]] = {}
        for raw in raw_params:
            param = self._resolve_parameter(raw)
            if param is None:
                logger.debug(f"Ignoring unresolvable parameter on {method} {path}: {raw}")
                continue
            merged[(param["name"], param["in"])] = param

        fields: Dict[str, FieldSchema] = {}
        body_params: List[Dict[str, Any]] = []
        for (name, location), param in merged.items():
            if location in ("body", "formData"):
                body_params.append(param)
                continue
            if location not in PARAMETER_LOCATIONS:
                continue

            schema = {"type": "string"}
            for key in PARAMETER_SCHEMA_KEYS:
                if key in param:
                    schema[key] = param[key]
            schema.update(self.resolver.resolve(param.get("schema")))
            if param.get("description") and not schema.get("description"):
                schema["description"] = param["description"]
            if "example" in param and "example" not in schema:
                schema["example"] = param["example"]

            required = bool(param.get("required")) or location == "path"
            fields[name] = FieldSchema(name, schema, required, location)
        return fields, body_params

    def _merge_request_body(self, fields: Dict[str, FieldSchema], operation: Dict[str, Any],
                            body_params: List[Dict[str, Any]]) -> None:
        body_schema, body_required = self._request_body_schema(operation, body_params)
        if body_schema is None:
            return

        properties = body_schema.get("properties") or {}
        if body_schema.get("type", "object") == "object" and properties:
            required = set(body_schema.get("required") or [])
            for name, prop in properties.items():
                if name in fields:
                    logger.debug(f"Body property '{name}' shadows a parameter; keeping the parameter")
                    continue
                fields[name] = FieldSchema(name, prop, name in required, "body")
        elif "body" not in fields:
            fields["body"] = FieldSchema("body", body_schema, body_required, "body")

    def _request_body_schema(self, operation: Dict[str, Any],
                             body_params: List[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], bool]:
        request_body = operation.get("requestBody")
        if isinstance(request_body, dict) and "$ref" in request_body:
            request_body = self.resolver.resolve_ref(request_body["$ref"])

        if isinstance(request_body, dict):
            content = request_body.get("content") or {}
            media = None
            for media_type, media_object in content.items():
                if "json" in media_type and isinstance(media_object, dict) and "schema" in media_object:
                    media = media_object
                    break
            if media is None:
                for media_object in content.values():
                    if isinstance(media_object, dict) and "schema" in media_object:
                        media = media_object
                        break
            if media is None:
                return None, False
            return self.resolver.resolve(media["schema"]), bool(request_body.get("required"))

        # Swagger 2.0: a single "in: body" parameter or a set of formData fields.
        for param in body_params:
            if param.get("in") == "body":
                return self.resolver.resolve(param.get("schema")), bool(param.get("required"))

        form_fields = [param for param in body_params if param.get("in") == "formData"]
        if form_fields:
            properties = {}
            required = []
            for param in form_fields:
                prop = {key: param[key] for key in PARAMETER_SCHEMA_KEYS if key in param}
                prop.setdefault("type", "string")
                if param.get("description"):
                    prop["description"] = param["description"]
                properties[param["name"]] = prop
                if param.get("required"):
                    required.append(param["name"])
            return {"type": "object", "properties": properties, "required": required}, bool(required)

        return None, False


def compile_spec(document: Dict[str, Any], base_url_override: Optional[str] = None) -> List[ToolDescriptor]:
    """Compile a document into tool descriptors."""
    return SpecCompiler(document, base_url_override).compile()
