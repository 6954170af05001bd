from typing import Any, Literal

from pydantic import BaseModel, Field

from dashscope_chat.models import (
    ChatCompletionFinishReason,
    ResultFormat,
    Role,
    ToolCall,
)


class MediaContent(BaseModel):
    text: str | None = None
    image: str | None = None

    @classmethod
    def from_text(cls, text: str | None):
        return cls(text=text)

    @classmethod
    def from_image(cls, url: str):
        return cls(image=url)


class ChatCompletionMessage(BaseModel):
    role: Role | None = None
    content: str | list[MediaContent] | None = None
    name: str | None = None
    tool_calls: list[ToolCall] | None = None

    def text(self) -> str | None:
        # Vision models answer with a list of parts even for plain text
        if self.content is None or isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if part.text is not None)


class FunctionDefinition(BaseModel):
    description: str | None = None
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class FunctionTool(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionDefinition


class ChatCompletionParameters(BaseModel):
    temperature: float | None = None
    top_p: float | None = None
    result_format: ResultFormat = ResultFormat.MESSAGE
    seed: int | None = None
    max_tokens: int | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None
    presence_penalty: float | None = None
    stop: list[str] | None = None
    enable_search: bool | None = None
    incremental_output: bool = True
    tools: list[FunctionTool] | None = None
    # "none", "auto" or {"type": "function", "function": {"name": ...}}
    tool_choice: str | dict[str, Any] | None = None


class ChatCompletionInput(BaseModel):
    messages: list[ChatCompletionMessage]


class ChatCompletionRequest(BaseModel):
    model: str | None = None
    input: ChatCompletionInput
    parameters: ChatCompletionParameters | None = None


class Usage(BaseModel):
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class Choice(BaseModel):
    finish_reason: ChatCompletionFinishReason | None = None
    message: ChatCompletionMessage | None = None


class Output(BaseModel):
    # Only populated for ResultFormat.TEXT
    text: str | None = None
    finish_reason: str | None = None
    # Only populated for ResultFormat.MESSAGE
    choices: list[Choice] | None = None


class ChatCompletion(BaseModel):
    request_id: str | None = None
    output: Output | None = None
    usage: Usage | None = None


class ChatCompletionChunk(BaseModel):
    request_id: str | None = None
    output: Output | None = None
    usage: Usage | None = None
    object: str | None = None

    @classmethod
    def empty(cls):
        """
        Seed value when folding a sequence of chunks together
        """
        return cls()

    def is_empty(self) -> bool:
        return (
            self.request_id is None
            and self.output is None
            and self.usage is None
            and self.object is None
        )

    def first_choice(self) -> Choice | None:
        if self.output is None or not self.output.choices:
            return None
        return self.output.choices[0]
