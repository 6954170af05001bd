import asyncio
from enum import Enum
from json import dumps as json_dumps
from os import getenv

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from dashscope_chat import (
    ChatMessage,
    DashScopeChat,
    DashScopeChatOptions,
    DashScopeModelVersion,
    Role,
)

load_dotenv()
API_KEY = getenv("DASHSCOPE_API_KEY")


class UnitType(Enum):
    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"


class GetCurrentWeatherRequest(BaseModel):
    location: str = Field(description="The city and state, e.g. San Francisco, CA")
    unit: UnitType | None = None


def get_current_weather(request: GetCurrentWeatherRequest):
    """
    Get the current weather in a given location

    The rest of the docstring should be omitted.
    """
    weather_info = {
        "location": request.location,
        "temperature": "72",
        "unit": request.unit.value if request.unit else None,
        "forecast": ["sunny", "windy"],
    }
    return json_dumps(weather_info)


async def runner():
    chat = DashScopeChat(
        api_key=API_KEY,
        options=DashScopeChatOptions(model=DashScopeModelVersion.QWEN_MAX),
    )
    messages = [
        ChatMessage(role=Role.USER, content="What's the weather like in Boston, in F?"),
    ]

    options = DashScopeChatOptions(function_callbacks=[get_current_weather])

    # Streamed tool calls arrive as a single response once all arguments are received
    async for response in chat.stream(messages, options):
        if response.result is None or not response.result.tool_calls:
            continue

        tool_call = response.result.tool_calls[0]
        function_call, function_arg = chat.resolve_tool_call(tool_call, options)
        print(f"Calling {function_call.__name__} with {function_arg}")

        messages += [
            ChatMessage(role=Role.ASSISTANT, content="", tool_calls=[tool_call]),
            ChatMessage(
                role=Role.TOOL,
                content=function_call(function_arg),
                name=function_call.__name__,
            ),
        ]

    response = await chat.call(messages, options)
    print(response.result.content if response.result else None)


asyncio.run(runner())
