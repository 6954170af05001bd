from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator

from dashscope_chat.exceptions import MultipleToolCallsError
from dashscope_chat.models import (
    ChatCompletionFinishReason,
    ChatCompletionFunction,
    Role,
    ToolCall,
)
from dashscope_chat.types_dashscope import (
    ChatCompletionChunk,
    ChatCompletionMessage,
    Choice,
    Output,
)


def merge(
    previous: ChatCompletionChunk | None, current: ChatCompletionChunk
) -> ChatCompletionChunk:
    """
    Merge the previous and current streamed chunks into a single cumulative chunk. Used to
    reassemble tool calls, whose function arguments are split across many server events.

    """
    check_single_tool_call(current)

    if previous is None or previous.is_empty():
        return current

    choice = merge_choice(previous.first_choice(), current.first_choice())

    return ChatCompletionChunk(
        request_id=(
            current.request_id if current.request_id is not None else previous.request_id
        ),
        object=current.object if current.object is not None else previous.object,
        usage=current.usage if current.usage is not None else previous.usage,
        output=Output(choices=[choice] if choice is not None else []),
    )


def check_single_tool_call(chunk: ChatCompletionChunk):
    choice = chunk.first_choice()
    if choice is None or choice.message is None or not choice.message.tool_calls:
        return
    if len(choice.message.tool_calls) > 1:
        raise MultipleToolCallsError(len(choice.message.tool_calls))


def merge_choice(previous: Choice | None, current: Choice | None) -> Choice | None:
    if previous is None:
        return current
    if current is None:
        return previous

    finish_reason = (
        current.finish_reason
        if current.finish_reason is not None
        else previous.finish_reason
    )
    return Choice(
        finish_reason=finish_reason,
        message=merge_message(previous.message, current.message),
    )


def merge_message(
    previous: ChatCompletionMessage | None, current: ChatCompletionMessage | None
) -> ChatCompletionMessage | None:
    if previous is None:
        return current
    if current is None:
        return previous

    content = current.content if current.content is not None else previous.content
    role = previous.role or current.role or Role.ASSISTANT
    name = current.name if current.name is not None else previous.name

    tool_calls: list[ToolCall] = []
    last_previous_tool_call: ToolCall | None = None
    if previous.tool_calls:
        *carried, last_previous_tool_call = previous.tool_calls
        tool_calls.extend(carried)

    if current.tool_calls:
        current_tool_call = current.tool_calls[0]
        if current_tool_call.function.name is not None:
            # A named call is the start of a new invocation
            if last_previous_tool_call is not None:
                tool_calls.append(last_previous_tool_call)
            tool_calls.append(current_tool_call)
        else:
            tool_calls.append(merge_tool_call(last_previous_tool_call, current_tool_call))
    elif last_previous_tool_call is not None:
        tool_calls.append(last_previous_tool_call)

    return ChatCompletionMessage(
        role=role,
        content=content,
        name=name,
        tool_calls=tool_calls,
    )


def merge_tool_call(previous: ToolCall | None, current: ToolCall) -> ToolCall:
    if previous is None:
        return current

    return ToolCall(
        type=current.type if current.type is not None else previous.type,
        function=merge_function(previous.function, current.function),
    )


def merge_function(
    previous: ChatCompletionFunction | None, current: ChatCompletionFunction
) -> ChatCompletionFunction:
    if previous is None:
        return current

    # Arguments are raw JSON fragments, so they are joined as text and never parsed here
    return ChatCompletionFunction(
        name=current.name if current.name is not None else previous.name,
        arguments=(previous.arguments or "") + (current.arguments or ""),
    )


def is_streaming_tool_function_call(chunk: ChatCompletionChunk | None) -> bool:
    if chunk is None:
        return False

    choice = chunk.first_choice()
    if choice is None or choice.message is None:
        return False
    return bool(choice.message.tool_calls)


def is_streaming_tool_function_call_finish(chunk: ChatCompletionChunk | None) -> bool:
    """
    True for the terminal chunk of a streamed tool call. The finish marker itself usually
    arrives with an empty delta, so callers should test the accumulated chunk rather than
    the raw event.

    """
    if not is_streaming_tool_function_call(chunk):
        return False

    choice = chunk.first_choice()  # type: ignore
    return choice.finish_reason == ChatCompletionFinishReason.TOOL_CALLS


async def merge_chunk_stream(
    chunks: AsyncIterable[ChatCompletionChunk],
) -> AsyncIterator[ChatCompletionChunk]:
    """
    Regular text chunks are passed through as they arrive. Chunks that belong to a tool call
    are folded together and emitted once, when the tool call finishes.

    """
    window: ChatCompletionChunk | None = None

    async for chunk in chunks:
        if window is None and not is_streaming_tool_function_call(chunk):
            yield merge(ChatCompletionChunk.empty(), chunk)
            continue

        window = merge(window, chunk)
        if is_streaming_tool_function_call_finish(window):
            yield window
            window = None

    if window is not None:
        # Stream closed before the server sent the tool call finish marker
        yield window


@dataclass
class StreamState:
    """
    Accumulates the properties of one streamed response. Only the first chunk is guaranteed
    to carry the role, so later chunks resolve their role through this object.

    """

    request_id: str | None = None
    role: Role | None = None
    finish_reason: ChatCompletionFinishReason | None = None
    content_parts: list[str] = field(default_factory=list)

    def update(self, chunk: ChatCompletionChunk) -> Role | None:
        if self.request_id is None:
            self.request_id = chunk.request_id

        choice = chunk.first_choice()
        if choice is None:
            return self.role

        if choice.finish_reason is not None:
            self.finish_reason = choice.finish_reason

        if choice.message is not None:
            if self.role is None and choice.message.role is not None:
                self.role = choice.message.role
            text = choice.message.text()
            if text:
                self.content_parts.append(text)

        return self.role

    @property
    def content(self) -> str:
        return "".join(self.content_parts)
