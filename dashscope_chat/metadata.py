from typing import Any

from pydantic import BaseModel, Field

from dashscope_chat.models import ToolCall
from dashscope_chat.types_dashscope import ChatCompletion, ChatCompletionChunk, Usage


class DashScopeUsage(BaseModel):
    prompt_tokens: int = 0
    generation_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage(cls, usage: Usage | None):
        if usage is None:
            return cls()
        return cls(
            prompt_tokens=usage.input_tokens or 0,
            generation_tokens=usage.output_tokens or 0,
            total_tokens=usage.total_tokens or 0,
        )


class ChatResponseMetadata(BaseModel):
    id: str | None = None
    model: str | None = None
    usage: DashScopeUsage = Field(default_factory=DashScopeUsage)

    @classmethod
    def from_completion(
        cls, completion: ChatCompletion | ChatCompletionChunk, model: str | None = None
    ):
        return cls(
            id=completion.request_id,
            model=model,
            usage=DashScopeUsage.from_usage(completion.usage),
        )


class GenerationMetadata(BaseModel):
    finish_reason: str | None = None


class Generation(BaseModel):
    """
    One candidate answer from the model
    """

    content: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ChatResponse(BaseModel):
    generations: list[Generation] = Field(default_factory=list)
    metadata: ChatResponseMetadata = Field(default_factory=ChatResponseMetadata)

    @property
    def result(self) -> Generation | None:
        return self.generations[0] if self.generations else None
