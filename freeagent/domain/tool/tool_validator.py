from typing import Dict, Any, List, NamedTuple

import jsonschema

from freeagent.domain.tool.tool_registry import ToolDefinition


class ValidationResult(NamedTuple):
    is_valid: bool
    errors: List[str]


# Parameter validation
class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(tool: ToolDefinition, parameters: Dict[str, Any]) -> ValidationResult:
        if not isinstance(parameters, dict):
            return ValidationResult(False, ["Parameters must be an object"])

        try:
            # saveAs is consumed by the engine, never by the tool
            params = {k: v for k, v in parameters.items() if k != "saveAs"}
            schema = dict(tool.parameters)
            schema.setdefault("type", "object")
            schema["properties"] = {
                name: prop for name, prop in schema.get("properties", {}).items() if name != "saveAs"
            }
            jsonschema.validate(params, schema)

            save_as = parameters.get("saveAs")
            if save_as is not None and (not isinstance(save_as, str) or not save_as.strip()):
                return ValidationResult(False, ["saveAs must be a non-empty string"])

            return ValidationResult(True, [])

        except jsonschema.ValidationError as e:
            return ValidationResult(False, [f"Schema validation failed: {e.message}"])
        except jsonschema.SchemaError as e:
            return ValidationResult(False, [f"Invalid tool schema: {e.message}"])
