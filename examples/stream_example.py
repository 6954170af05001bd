import asyncio
import sys
from os import getenv

from dotenv import load_dotenv

from dashscope_chat import ChatMessage, DashScopeChat, DashScopeModelVersion, Role
from dashscope_chat.options import DashScopeChatOptions

load_dotenv()
API_KEY = getenv("DASHSCOPE_API_KEY")

SYSTEM_PROMPT = """
You are a phenomenal and stubborn math tutor. Do not give away the answer, but help the
student understand the problem better.

Problem: x^2 + 3 = 12
"""

chat = DashScopeChat(
    api_key=API_KEY,
    options=DashScopeChatOptions(model=DashScopeModelVersion.QWEN_PLUS),
)


async def main():
    question = input("Ask question: ")
    messages = [
        ChatMessage(role=Role.SYSTEM, content=SYSTEM_PROMPT),
        ChatMessage(role=Role.USER, content=f"Student: {question}"),
    ]

    print("\nTutor: ", end="")
    async for partial in chat.stream(messages=messages):
        if partial.result is None:
            continue
        print(partial.result.content or "", end="")
        sys.stdout.flush()

        if partial.metadata.usage.total_tokens:
            print(f"\n\n({partial.metadata.usage.total_tokens} tokens)")


if __name__ == "__main__":
    asyncio.run(main())
