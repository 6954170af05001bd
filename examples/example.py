import asyncio
from os import getenv

from dotenv import load_dotenv

from dashscope_chat import ChatMessage, DashScopeChat, DashScopeChatOptions, Role

load_dotenv()
API_KEY = getenv("DASHSCOPE_API_KEY")


async def runner():
    chat = DashScopeChat(api_key=API_KEY)
    response = await chat.call(
        messages=[
            ChatMessage(
                role=Role.SYSTEM,
                content="Answer in a single short sentence.",
            ),
            ChatMessage(
                role=Role.USER,
                content="Why is the sky blue?",
            ),
        ],
        options=DashScopeChatOptions(temperature=0.2),
    )
    print(response)
    print(f"Answer: {response.result.content if response.result else None}")
    print(f"Tokens used: {response.metadata.usage.total_tokens}")


asyncio.run(runner())
