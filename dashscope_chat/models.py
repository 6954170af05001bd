import sys
from base64 import b64encode
from dataclasses import dataclass
from enum import Enum, unique

from pydantic import BaseModel, ConfigDict, model_validator

from dashscope_chat.exceptions import UnsupportedMediaTypeError

if sys.version_info >= (3, 11):
    from enum import StrEnum

    EnumSuper = StrEnum
else:
    EnumSuper = Enum


@unique
class Role(EnumSuper):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@unique
class ChatCompletionFinishReason(EnumSuper):
    STOP = "stop"
    LENGTH = "length"
    # Sent by the server on every chunk while generation is still in progress
    NULL = "null"
    TOOL_CALLS = "tool_calls"


@unique
class ResultFormat(EnumSuper):
    TEXT = "text"
    MESSAGE = "message"


@dataclass
class ModelVersionParams:
    api_name: str
    context_length: int
    max_input_tokens: int
    supports_images: bool = False


@unique
class DashScopeModelVersion(Enum):
    # https://help.aliyun.com/zh/dashscope/developer-reference/model-square/

    QWEN_TURBO = ModelVersionParams(
        api_name="qwen-turbo", context_length=8_000, max_input_tokens=6_000
    )
    QWEN_PLUS = ModelVersionParams(
        api_name="qwen-plus", context_length=32_000, max_input_tokens=30_000
    )
    # qwen-max tracks the latest release; pin a dated snapshot for fixed behavior
    QWEN_MAX = ModelVersionParams(
        api_name="qwen-max", context_length=8_000, max_input_tokens=6_000
    )
    QWEN_MAX_LONGCONTEXT = ModelVersionParams(
        api_name="qwen-max-longcontext", context_length=30_000, max_input_tokens=28_000
    )
    QWEN_VL_PLUS = ModelVersionParams(
        api_name="qwen-vl-plus",
        context_length=8_000,
        max_input_tokens=6_000,
        supports_images=True,
    )
    QWEN_VL_MAX = ModelVersionParams(
        api_name="qwen-vl-max",
        context_length=8_000,
        max_input_tokens=6_000,
        supports_images=True,
    )


DEFAULT_CHAT_MODEL = DashScopeModelVersion.QWEN_TURBO


class Media(BaseModel):
    """
    An attachment on a chat message. Raw bytes are assumed to be an image and are
    sent inline as a data url; strings are sent as-is (a url or a pre-encoded data url).

    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    mime_type: str
    data: object

    def to_url(self) -> str:
        if isinstance(self.data, bytes):
            encoded = b64encode(self.data).decode()
            return f"data:{self.mime_type};base64,{encoded}"
        elif isinstance(self.data, str):
            return self.data
        raise UnsupportedMediaTypeError(self.data)


class ChatCompletionFunction(BaseModel):
    name: str | None = None
    # JSON encoded string; arrives fragmented across streamed chunks
    arguments: str | None = None


class ToolCall(BaseModel):
    type: str | None = None
    function: ChatCompletionFunction


class ChatMessage(BaseModel):
    """
    A single message in the chat sequence
    """

    role: Role
    content: str | None = None
    media: list[Media] | None = None

    # Only meaningful on tool messages, where it echoes the called function name
    name: str | None = None

    # Set on assistant turns that requested a function, so the turn can be replayed
    tool_calls: list[ToolCall] | None = None

    @model_validator(mode="after")
    def check_name_if_tool(self):
        if self.role == Role.TOOL and self.name is None:
            raise ValueError("Must provide a name for tool messages")
        return self
