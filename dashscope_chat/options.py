from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashscope_chat.fn_calling import function_to_name
from dashscope_chat.models import DashScopeModelVersion, ResultFormat
from dashscope_chat.types_dashscope import ChatCompletionParameters, FunctionTool

GENERATION_FIELDS = (
    "temperature",
    "top_p",
    "result_format",
    "seed",
    "max_tokens",
    "top_k",
    "repetition_penalty",
    "presence_penalty",
    "stop",
    "enable_search",
    "incremental_output",
    "tools",
    "tool_choice",
)


class DashScopeChatOptions(BaseModel):
    """
    Model id and generation parameters for a chat request. Options set on a single call
    override the defaults configured on the chat model, field by field.

    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str | None = None

    temperature: float | None = None
    top_p: float | None = None
    result_format: ResultFormat | None = None
    seed: int | None = None
    max_tokens: int | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None
    presence_penalty: float | None = None
    stop: list[str] | None = None
    enable_search: bool | None = None
    incremental_output: bool | None = None
    tools: list[FunctionTool] | None = None
    tool_choice: str | dict[str, Any] | None = None

    # Tool callables available to the model. Callbacks on per-call options are enabled
    # for that call; callbacks on the default options must also be named in `functions`.
    function_callbacks: list[Callable[[Any], Any]] = Field(
        default_factory=list, exclude=True
    )
    functions: set[str] = Field(default_factory=set, exclude=True)

    @field_validator("model", mode="before")
    def unwrap_model_version(cls, value):
        if isinstance(value, DashScopeModelVersion):
            return value.value.api_name
        return value

    def enabled_functions(self, is_runtime_call: bool) -> set[str]:
        enabled = set(self.functions)
        if is_runtime_call:
            enabled.update(function_to_name(fn) for fn in self.function_callbacks)
        return enabled

    def to_parameters(self, tools: list[FunctionTool] | None = None):
        values = {
            key: getattr(self, key)
            for key in GENERATION_FIELDS
            if getattr(self, key) is not None
        }
        if tools:
            values["tools"] = [*(values.get("tools") or []), *tools]
        return ChatCompletionParameters(**values)


def merge_options(
    runtime: DashScopeChatOptions | None, default: DashScopeChatOptions | None
) -> DashScopeChatOptions:
    runtime = runtime or DashScopeChatOptions()
    default = default or DashScopeChatOptions()

    merged = {
        key: getattr(runtime, key)
        if getattr(runtime, key) is not None
        else getattr(default, key)
        for key in ("model", *GENERATION_FIELDS)
    }

    callbacks = {function_to_name(fn): fn for fn in default.function_callbacks}
    callbacks.update({function_to_name(fn): fn for fn in runtime.function_callbacks})

    return DashScopeChatOptions(
        **merged,
        function_callbacks=list(callbacks.values()),
        functions=runtime.enabled_functions(is_runtime_call=True)
        | default.enabled_functions(is_runtime_call=False),
    )
