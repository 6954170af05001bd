from functools import reduce

import pytest

from dashscope_chat.exceptions import MultipleToolCallsError
from dashscope_chat.models import (
    ChatCompletionFinishReason,
    ChatCompletionFunction,
    Role,
    ToolCall,
)
from dashscope_chat.streaming import (
    StreamState,
    is_streaming_tool_function_call,
    is_streaming_tool_function_call_finish,
    merge,
    merge_chunk_stream,
)
from dashscope_chat.tests.utils.streaming_utils import (
    REQUEST_ID,
    async_iter,
    make_chunk,
    make_tool_call,
)
from dashscope_chat.types_dashscope import ChatCompletionChunk, Output, Usage


def test_merge_argument_fragments_one_character_at_a_time():
    arguments = '{"location": "Boston, MA", "unit": "fahrenheit"}'
    chunks = [
        make_chunk(
            role="assistant",
            tool_calls=[make_tool_call(name="get_current_weather", arguments="")],
        ),
        *(make_chunk(tool_calls=[make_tool_call(arguments=char)]) for char in arguments),
    ]

    merged = reduce(merge, chunks, ChatCompletionChunk.empty())

    choice = merged.first_choice()
    assert choice is not None
    assert choice.message is not None
    assert choice.message.tool_calls == [
        ToolCall(
            type="function",
            function=ChatCompletionFunction(
                name="get_current_weather", arguments=arguments
            ),
        )
    ]


@pytest.mark.parametrize(
    "current",
    [
        make_chunk(content="Hello", role="assistant"),
        make_chunk(finish_reason="stop", usage={"input_tokens": 3}),
        make_chunk(tool_calls=[make_tool_call(name="lookup", arguments="{")]),
        ChatCompletionChunk(request_id="abc", object="chunk"),
    ],
)
def test_merge_with_initial_chunk_returns_current(current: ChatCompletionChunk):
    assert merge(ChatCompletionChunk.empty(), current) == current
    assert merge(None, current) is current


def test_merge_takes_current_values_when_present():
    previous = make_chunk(content="Hi", usage={"input_tokens": 1}, request_id="first")
    current = make_chunk(content=" there", request_id=None)
    current.object = "chat.completion.chunk"

    merged = merge(previous, current)

    assert merged.request_id == "first"
    assert merged.object == "chat.completion.chunk"
    assert merged.usage == Usage(input_tokens=1)
    assert merged.first_choice().message.content == " there"  # type: ignore


def test_merge_role_is_kept_once_supplied():
    chunks = [
        make_chunk(role="assistant", content="a"),
        make_chunk(content="b"),
        make_chunk(content="c"),
        make_chunk(finish_reason="stop"),
    ]

    merged = ChatCompletionChunk.empty()
    for chunk in chunks:
        merged = merge(merged, chunk)
        assert merged.first_choice().message.role == Role.ASSISTANT  # type: ignore


def test_merge_role_first_value_wins():
    merged = merge(
        make_chunk(role="assistant", content="a"), make_chunk(role="user", content="b")
    )
    assert merged.first_choice().message.role == Role.ASSISTANT  # type: ignore

    merged = merge(make_chunk(content="a"), make_chunk(role="user", content="b"))
    assert merged.first_choice().message.role == Role.USER  # type: ignore


def test_merge_role_defaults_to_assistant():
    merged = merge(make_chunk(content="a"), make_chunk(content="b"))
    assert merged.first_choice().message.role == Role.ASSISTANT  # type: ignore


def test_merge_content_absent_on_both_sides_stays_absent():
    merged = merge(make_chunk(), make_chunk())
    assert merged.first_choice().message.content is None  # type: ignore


def test_merge_finish_reason():
    merged = merge(make_chunk(finish_reason="null"), make_chunk(finish_reason=None))
    assert merged.first_choice().finish_reason == ChatCompletionFinishReason.NULL  # type: ignore

    merged = merge(merged, make_chunk(finish_reason="tool_calls"))
    assert (
        merged.first_choice().finish_reason  # type: ignore
        == ChatCompletionFinishReason.TOOL_CALLS
    )


def test_merge_named_tool_call_starts_new_entry():
    previous = make_chunk(
        tool_calls=[make_tool_call(name="lookup", arguments='{"q": "x"}')]
    )
    current = make_chunk(tool_calls=[make_tool_call(name="get_current_weather")])

    merged = merge(previous, current)
    tool_calls = merged.first_choice().message.tool_calls  # type: ignore
    assert [call.function.name for call in tool_calls] == [
        "lookup",
        "get_current_weather",
    ]

    # Continuations only extend the most recent call
    merged = merge(merged, make_chunk(tool_calls=[make_tool_call(arguments="{}")]))
    tool_calls = merged.first_choice().message.tool_calls  # type: ignore
    assert tool_calls[0].function.arguments == '{"q": "x"}'
    assert tool_calls[1].function.arguments == "{}"


def test_merge_without_current_tool_call_carries_previous():
    previous = make_chunk(tool_calls=[make_tool_call(name="lookup", arguments="{}")])
    merged = merge(previous, make_chunk(content=""))
    assert merged.first_choice().message.tool_calls == previous.first_choice().message.tool_calls  # type: ignore


@pytest.mark.parametrize(
    "previous",
    [
        None,
        ChatCompletionChunk.empty(),
        make_chunk(tool_calls=[make_tool_call(name="lookup", arguments="{")]),
    ],
)
def test_merge_rejects_multiple_tool_calls(previous):
    current = make_chunk(
        tool_calls=[
            make_tool_call(name="lookup", arguments="{}"),
            make_tool_call(name="get_current_weather", arguments="{}"),
        ]
    )

    with pytest.raises(MultipleToolCallsError):
        merge(previous, current)


@pytest.mark.parametrize(
    "chunk,expected",
    [
        (make_chunk(tool_calls=[make_tool_call(name="lookup")]), True),
        (make_chunk(tool_calls=[]), False),
        (make_chunk(content="Hello"), False),
        (ChatCompletionChunk(output=Output(choices=[])), False),
        (ChatCompletionChunk.empty(), False),
        (None, False),
    ],
)
def test_is_streaming_tool_function_call(chunk, expected: bool):
    assert is_streaming_tool_function_call(chunk) == expected


@pytest.mark.parametrize(
    "chunk,expected",
    [
        (
            make_chunk(
                finish_reason="tool_calls",
                tool_calls=[make_tool_call(name="lookup", arguments="{}")],
            ),
            True,
        ),
        (
            make_chunk(
                finish_reason="stop",
                tool_calls=[make_tool_call(name="lookup", arguments="{}")],
            ),
            False,
        ),
        (
            make_chunk(
                finish_reason="null",
                tool_calls=[make_tool_call(name="lookup", arguments="{}")],
            ),
            False,
        ),
        (make_chunk(finish_reason="tool_calls"), False),
        (ChatCompletionChunk(output=Output(choices=[])), False),
        (ChatCompletionChunk(output=Output()), False),
        (None, False),
    ],
)
def test_is_streaming_tool_function_call_finish(chunk, expected: bool):
    assert is_streaming_tool_function_call_finish(chunk) == expected


@pytest.mark.asyncio
async def test_merge_chunk_stream_folds_tool_call():
    chunks = [
        make_chunk(
            role="assistant",
            content="",
            tool_calls=[make_tool_call(name="lookup", arguments='{"q":')],
        ),
        make_chunk(tool_calls=[make_tool_call(arguments='"x"}')]),
        make_chunk(finish_reason="tool_calls"),
    ]

    merged = [chunk async for chunk in merge_chunk_stream(async_iter(chunks))]

    assert len(merged) == 1
    choice = merged[0].first_choice()
    assert choice is not None
    assert choice.finish_reason == ChatCompletionFinishReason.TOOL_CALLS
    assert choice.message is not None
    assert choice.message.role == Role.ASSISTANT
    assert choice.message.tool_calls == [
        ToolCall(
            type="function",
            function=ChatCompletionFunction(name="lookup", arguments='{"q":"x"}'),
        )
    ]
    assert merged[0].request_id == REQUEST_ID


@pytest.mark.asyncio
async def test_merge_chunk_stream_passes_text_chunks_through():
    chunks = [
        make_chunk(role="assistant", content="Hel"),
        make_chunk(role="assistant", content="lo"),
        make_chunk(role="assistant", content="", finish_reason="stop"),
    ]

    merged = [chunk async for chunk in merge_chunk_stream(async_iter(chunks))]

    assert merged == chunks


@pytest.mark.asyncio
async def test_merge_chunk_stream_flushes_unfinished_tool_call():
    chunks = [
        make_chunk(role="assistant", content="Let me check."),
        make_chunk(tool_calls=[make_tool_call(name="lookup", arguments="{")]),
        make_chunk(tool_calls=[make_tool_call(arguments="}")]),
    ]

    merged = [chunk async for chunk in merge_chunk_stream(async_iter(chunks))]

    assert len(merged) == 2
    assert merged[0] == chunks[0]
    assert merged[1].first_choice().message.tool_calls[0].function.arguments == "{}"  # type: ignore


@pytest.mark.asyncio
async def test_merge_chunk_stream_fails_on_multiple_tool_calls():
    chunks = [
        make_chunk(tool_calls=[make_tool_call(name="lookup", arguments="{")]),
        make_chunk(
            tool_calls=[make_tool_call(arguments="}"), make_tool_call(arguments="{")]
        ),
    ]

    with pytest.raises(MultipleToolCallsError):
        [chunk async for chunk in merge_chunk_stream(async_iter(chunks))]


def test_stream_state_keeps_first_role_and_appends_content():
    state = StreamState()

    assert state.update(make_chunk(role="assistant", content="Hel")) == Role.ASSISTANT
    assert state.update(make_chunk(content="lo")) == Role.ASSISTANT
    assert state.update(make_chunk(role="user", content="!")) == Role.ASSISTANT
    assert state.update(make_chunk(finish_reason="stop")) == Role.ASSISTANT

    assert state.content == "Hello!"
    assert state.request_id == REQUEST_ID
    assert state.finish_reason == ChatCompletionFinishReason.STOP


def test_stream_state_without_role():
    state = StreamState()
    assert state.update(make_chunk(content="a")) is None
    assert state.update(ChatCompletionChunk.empty()) is None
