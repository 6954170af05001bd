from inspect import getdoc, signature
from typing import Any, Callable, Type

from pydantic import BaseModel

from dashscope_chat.types_dashscope import FunctionDefinition, FunctionTool


def function_to_tool(fn: Callable) -> FunctionTool:
    """
    Describe a python function as a DashScope tool. The first paragraph of the docstring
    becomes the description and the single pydantic parameter becomes the JSON schema
    of the tool arguments.

    API Reference: https://help.aliyun.com/zh/dashscope/developer-reference/api-details

    """
    parameter_type = get_argument_for_function(fn)

    return FunctionTool(
        function=FunctionDefinition(
            name=function_to_name(fn),
            description=get_function_description(fn),
            parameters=model_to_parameter_schema(parameter_type),
        )
    )


def model_to_parameter_schema(model: Type[BaseModel]) -> dict[str, Any]:
    formatted_json = resolve_refs(model.model_json_schema())
    return {
        "type": "object",
        "properties": formatted_json.get("properties", {}),
        "required": formatted_json.get("required", []),
    }


def function_to_name(fn: Callable) -> str:
    return fn.__name__


def get_function_description(fn: Callable) -> str:
    """
    The description of a function is everything before an empty linebreak.

    For instance:

    ```
    A
    B

    C
    ```

    Would return "A B"

    """
    docstring = getdoc(fn) or ""
    description_lines = []
    for line in docstring.strip().split("\n"):
        if not line.strip():
            break
        description_lines.append(line.strip())
    return " ".join(description_lines)


def get_argument_for_function(fn: Callable) -> Type[BaseModel]:
    """
    Tool functions take exactly one argument: a pydantic model that captures the input
    parameters and their descriptions.

    """
    parameters = list(signature(fn).parameters.values())

    if len(parameters) != 1:
        raise ValueError(
            f"Only one argument is allowed as the function input: {fn} {parameters}"
        )

    parameter_type = parameters[0].annotation
    if not isinstance(parameter_type, type) or not issubclass(
        parameter_type, BaseModel
    ):
        raise ValueError(
            f"Only Pydantic objects are allowed as function inputs: {fn} {parameter_type}"
        )

    return parameter_type


def resolve_refs(schema, defs=None):
    """
    Given a JSON-Schema, replace all $ref references with their definitions.

    Pydantic exports nested fields (like enums) into a separate $defs lookup table. The
    inlined form is what we send to the API, since it is the shape the tool-calling
    documentation uses throughout.

    """
    if defs is None:
        defs = schema.get("$defs", {})

    if isinstance(schema, dict):
        if "$ref" in schema:
            # '#/$defs/UnitType'
            ref_key = schema["$ref"].split("/")[-1]
            return resolve_refs(defs[ref_key], defs)

        return {k: resolve_refs(v, defs) for k, v in schema.items() if k != "$defs"}

    if isinstance(schema, list):
        return [resolve_refs(item, defs) for item in schema]

    return schema
