from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, ValidationError

from dashscope_chat.api import DashScopeApi, logger
from dashscope_chat.exceptions import InvalidFunctionParameters, InvalidFunctionResponse
from dashscope_chat.fn_calling import (
    function_to_name,
    function_to_tool,
    get_argument_for_function,
)
from dashscope_chat.metadata import (
    ChatResponse,
    ChatResponseMetadata,
    Generation,
    GenerationMetadata,
)
from dashscope_chat.models import (
    DEFAULT_CHAT_MODEL,
    ChatMessage,
    ResultFormat,
    Role,
    ToolCall,
)
from dashscope_chat.options import DashScopeChatOptions, merge_options
from dashscope_chat.streaming import StreamState
from dashscope_chat.types_dashscope import (
    ChatCompletion,
    ChatCompletionChunk,
    ChatCompletionInput,
    ChatCompletionMessage,
    ChatCompletionRequest,
    Choice,
    FunctionTool,
    MediaContent,
)


class DashScopeChat:
    """
    Chat model over the DashScope API, supporting both whole responses and streaming.

    """

    def __init__(
        self,
        api: DashScopeApi | None = None,
        options: DashScopeChatOptions | None = None,
        **api_kwargs,
    ):
        """
        :param api: Preconfigured client; built from `api_kwargs` when omitted
        :param options: Defaults for every request. Per-call options take precedence.
        :param api_kwargs: Passed through to `DashScopeApi`, like `api_key` or `max_retries`

        """
        self.api = api or DashScopeApi(**api_kwargs)
        self.default_options = options or DashScopeChatOptions(
            model=DEFAULT_CHAT_MODEL,
            temperature=0.7,
        )

    async def call(
        self,
        messages: list[ChatMessage],
        options: DashScopeChatOptions | None = None,
    ) -> ChatResponse:
        """
        :param messages: List of ChatMessage objects to send to the API
        :param options: Options for this call only, merged over the model defaults. Function
            callbacks passed here are enabled for the call.

        :return: ChatResponse with one generation per returned choice. An empty or malformed
            response body produces a ChatResponse without generations.

        """
        request = self.create_request(messages, options)
        completion = await self.api.chat_completion(request)

        if completion is None or completion.output is None:
            logger.warning(f"No chat completion returned for messages: {messages}")
            return ChatResponse()

        metadata = ChatResponseMetadata.from_completion(completion, model=request.model)

        result_format = (
            request.parameters.result_format
            if request.parameters
            else ResultFormat.MESSAGE
        )
        if result_format == ResultFormat.MESSAGE:
            generations = [
                self.choice_to_generation(completion.request_id, choice)
                for choice in completion.output.choices or []
            ]
        else:
            generations = [self.text_to_generation(completion)]

        return ChatResponse(generations=generations, metadata=metadata)

    async def stream(
        self,
        messages: list[ChatMessage],
        options: DashScopeChatOptions | None = None,
        state: StreamState | None = None,
    ) -> AsyncIterator[ChatResponse]:
        """
        See `call` for documentation. Yields one response per streamed chunk; tool calls are
        yielded once, after all of their argument fragments have arrived.

        :param state: Optional accumulator for this stream. Pass one in to read the full
            content, request id and final finish reason once the stream is exhausted.

        """
        request = self.create_request(messages, options, stream=True)

        state = state if state is not None else StreamState()
        async for chunk in self.api.chat_completion_stream(request):
            yield self.chunk_to_response(chunk, state, model=request.model)

    def chunk_to_response(
        self,
        chunk: ChatCompletionChunk,
        state: StreamState,
        model: str | None = None,
    ) -> ChatResponse:
        role = state.update(chunk)

        choices = chunk.output.choices if chunk.output and chunk.output.choices else []

        generations = []
        for choice in choices:
            message = choice.message or ChatCompletionMessage()
            finish_reason = choice.finish_reason.value if choice.finish_reason else None
            generations.append(
                Generation(
                    content=message.text(),
                    properties={
                        "request_id": chunk.request_id,
                        "role": role.value if role else "",
                        "finish_reason": finish_reason or "",
                    },
                    metadata=GenerationMetadata(finish_reason=finish_reason),
                    tool_calls=message.tool_calls or [],
                )
            )

        if not choices and chunk.output and chunk.output.text is not None:
            generations.append(
                Generation(
                    content=chunk.output.text,
                    properties={
                        "request_id": chunk.request_id,
                        "role": Role.ASSISTANT.value,
                        "finish_reason": chunk.output.finish_reason or "",
                    },
                    metadata=GenerationMetadata(finish_reason=chunk.output.finish_reason),
                )
            )

        if chunk.usage is not None:
            return ChatResponse(
                generations=generations,
                metadata=ChatResponseMetadata.from_completion(chunk, model=model),
            )
        return ChatResponse(generations=generations)

    def choice_to_generation(self, request_id: str | None, choice: Choice):
        message = choice.message or ChatCompletionMessage()
        finish_reason = choice.finish_reason.value if choice.finish_reason else None

        properties: dict[str, Any] = {"request_id": request_id}
        if message.role is not None:
            properties["role"] = message.role.value
        if finish_reason is not None:
            properties["finish_reason"] = finish_reason

        return Generation(
            content=message.text(),
            properties=properties,
            metadata=GenerationMetadata(finish_reason=finish_reason),
            tool_calls=message.tool_calls or [],
        )

    def text_to_generation(self, completion: ChatCompletion):
        output = completion.output
        text = output.text if output else None
        finish_reason = output.finish_reason if output else None

        properties: dict[str, Any] = {"request_id": completion.request_id}
        if text is not None:
            properties["role"] = Role.ASSISTANT.value
        if finish_reason is not None:
            properties["finish_reason"] = finish_reason

        return Generation(
            content=text,
            properties=properties,
            metadata=GenerationMetadata(finish_reason=finish_reason),
        )

    def create_request(
        self,
        messages: list[ChatMessage],
        options: DashScopeChatOptions | None = None,
        stream: bool = False,
    ) -> ChatCompletionRequest:
        merged_options = merge_options(options, self.default_options)
        tools = self.get_function_tools(merged_options)

        request = ChatCompletionRequest(
            model=merged_options.model,
            input=ChatCompletionInput(
                messages=[self.message_to_completion_message(m) for m in messages]
            ),
            parameters=merged_options.to_parameters(tools),
        )

        logger.debug(
            f"Created {'streaming ' if stream else ''}request for model {request.model} "
            f"with tools {[tool.function.name for tool in tools]}"
        )
        return request

    def message_to_completion_message(self, message: ChatMessage):
        content: str | list[MediaContent] | None
        if not message.media:
            content = message.content
        else:
            content = [
                MediaContent.from_text(message.content),
                *(MediaContent.from_image(media.to_url()) for media in message.media),
            ]

        return ChatCompletionMessage(
            role=message.role,
            content=content,
            name=message.name,
            tool_calls=message.tool_calls,
        )

    def get_function_tools(self, options: DashScopeChatOptions) -> list[FunctionTool]:
        callbacks = {function_to_name(fn): fn for fn in options.function_callbacks}

        tools = []
        for function_name in sorted(options.functions):
            if function_name not in callbacks:
                raise ValueError(f"No function callback found for name: {function_name}")
            tools.append(function_to_tool(callbacks[function_name]))
        return tools

    def function_callbacks(
        self, options: DashScopeChatOptions | None = None
    ) -> dict[str, Callable[[Any], Any]]:
        merged = merge_options(options, self.default_options)
        return {function_to_name(fn): fn for fn in merged.function_callbacks}

    def resolve_tool_call(
        self,
        tool_call: ToolCall,
        options: DashScopeChatOptions | None = None,
    ) -> tuple[Callable[[Any], Any], BaseModel]:
        """
        Match a tool call from the model to the registered python function, and parse its
        JSON arguments into the function's pydantic argument model.

        """
        callbacks = self.function_callbacks(options)
        function_name = tool_call.function.name
        if function_name is None or function_name not in callbacks:
            raise InvalidFunctionResponse(function_name)

        function_call = callbacks[function_name]
        function_arg_model = get_argument_for_function(function_call)

        # Parameters are formatted as raw json strings
        try:
            function_parsed = function_arg_model.model_validate_json(
                tool_call.function.arguments or ""
            )
        except (ValueError, ValidationError):
            raise InvalidFunctionParameters(function_name, tool_call.function.arguments)

        return function_call, function_parsed
