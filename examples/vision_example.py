import asyncio
from os import getenv
from pathlib import Path

from dotenv import load_dotenv

from dashscope_chat import (
    ChatMessage,
    DashScopeChat,
    DashScopeChatOptions,
    DashScopeModelVersion,
    Media,
    Role,
)

load_dotenv()
API_KEY = getenv("DASHSCOPE_API_KEY")


async def runner(image_path: str):
    chat = DashScopeChat(api_key=API_KEY)
    response = await chat.call(
        messages=[
            ChatMessage(
                role=Role.USER,
                content="Describe this picture in one sentence.",
                media=[
                    Media(mime_type="image/png", data=Path(image_path).read_bytes()),
                ],
            )
        ],
        options=DashScopeChatOptions(model=DashScopeModelVersion.QWEN_VL_PLUS),
    )
    print(response.result.content if response.result else response)


asyncio.run(runner("image.png"))
