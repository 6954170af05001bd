import logging
from dataclasses import dataclass
from os import getenv
from typing import AsyncIterable, AsyncIterator

import backoff
import httpx
from pydantic import ValidationError

from dashscope_chat.exceptions import DashScopeAPIError, TransientDashScopeError
from dashscope_chat.streaming import merge_chunk_stream
from dashscope_chat.types_dashscope import (
    ChatCompletion,
    ChatCompletionChunk,
    ChatCompletionRequest,
)

logger = logging.getLogger("dashscope_logger")
handler = logging.StreamHandler()
formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
handler.setFormatter(formatter)
logger.addHandler(handler)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc"
GENERATION_PATH = "/text-generation/generation"

API_KEY_ENV = "DASHSCOPE_API_KEY"
BASE_URL_ENV = "DASHSCOPE_BASE_URL"

SSE_DONE = "[DONE]"


def handle_backoff(details):
    logger.warning(
        "Backing off {wait:0.1f} seconds after {tries} tries "
        "calling function {target} with args {args} and kwargs "
        "{kwargs}".format(**details)
    )


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@dataclass
class ServerSentEvent:
    data: str
    event: str | None = None
    status_code: int | None = None


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """
    DashScope frames every event as a handful of `field:value` lines, for example:

    ```
    id:1
    event:result
    :HTTP_STATUS/200
    data:{"output": ...}
    ```

    A blank line closes the event. Multiple `data` lines within one event are joined with
    newlines.

    """
    event: str | None = None
    status_code: int | None = None
    data_lines: list[str] = []

    async for line in lines:
        if not line:
            if data_lines:
                yield ServerSentEvent(
                    data="\n".join(data_lines), event=event, status_code=status_code
                )
            event = None
            status_code = None
            data_lines = []
            continue
        if line.startswith(":HTTP_STATUS/"):
            status = line.split("/", 1)[1].strip()
            if status.isdigit():
                status_code = int(status)
            else:
                logger.warning(f"Ignoring unparsable status line: {line}")
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)

    # Stream closed without a trailing blank line
    if data_lines:
        yield ServerSentEvent(
            data="\n".join(data_lines), event=event, status_code=status_code
        )


class DashScopeApi:
    """
    Low level access to the DashScope text generation endpoint.

    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = 60,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        :param api_key: DashScope API key, if `DASHSCOPE_API_KEY` environment variable is not set
        :param base_url: Override of the service root, if `DASHSCOPE_BASE_URL` is not set
        :param timeout: Timeout in seconds for each API call
        :param max_retries: Amount of attempts for calls that fail with transient network,
            rate limit or server errors

        """
        self.api_key = api_key or getenv(API_KEY_ENV)
        if not self.api_key:
            raise ValueError(
                f"DashScope API key must be provided, either directly or through {API_KEY_ENV}."
            )

        self.base_url = (base_url or getenv(BASE_URL_ENV) or DEFAULT_BASE_URL).rstrip(
            "/"
        )
        self.max_retries = max_retries
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletion | None:
        """
        :return: The decoded completion, or None when the server sent back an empty or
            malformed body.

        """
        response = await self._with_backoff(self.submit_request)(request)

        logger.debug("------- RAW RESPONSE ----------")
        logger.debug(response.text)
        logger.debug("------- END RAW RESPONSE ----------")

        if not response.content:
            logger.warning("No chat completion body returned for request")
            return None

        try:
            return ChatCompletion.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning(f"Unable to decode chat completion body: {e}")
            return None

    async def chat_completion_stream(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[ChatCompletionChunk]:
        """
        Streams the completion as server-sent events. Regular chunks are yielded as they
        arrive, while the fragments of a tool call are merged into one chunk.

        Only opening the connection is retried. Failures after the first event has been
        read propagate to the caller.

        """
        response = await self._with_backoff(self.submit_request)(request, stream=True)
        try:
            async for chunk in merge_chunk_stream(self._decode_chunks(response)):
                yield chunk
        finally:
            await response.aclose()

    async def _decode_chunks(
        self, response: httpx.Response
    ) -> AsyncIterator[ChatCompletionChunk]:
        async for event in iter_sse_events(response.aiter_lines()):
            if event.data.strip() == SSE_DONE:
                break

            logger.debug(f"Raw stream event: {event.data}")

            if event.event == "error":
                raise DashScopeAPIError(event.status_code or 500, event.data)

            yield ChatCompletionChunk.model_validate_json(event.data)

    async def submit_request(
        self, request: ChatCompletionRequest, stream: bool = False
    ) -> httpx.Response:
        """
        Raises TransientDashScopeError for rate limits and server failures, and
        DashScopeAPIError for any other unsuccessful status.

        """
        payload = request.model_dump(mode="json", exclude_none=True)

        logger.debug("------- START REQUEST ----------")
        logger.debug(payload)
        logger.debug("------- END REQUEST ----------")

        headers = dict(self.headers)
        if stream:
            headers["X-DashScope-SSE"] = "enable"

        http_request = self.client.build_request(
            "POST",
            f"{self.base_url}{GENERATION_PATH}",
            json=payload,
            headers=headers,
        )
        response = await self.client.send(http_request, stream=stream)

        if response.is_error:
            body = (await response.aread()).decode(errors="replace")
            await response.aclose()
            if is_transient_status(response.status_code):
                raise TransientDashScopeError(response.status_code, body)
            raise DashScopeAPIError(response.status_code, body)

        return response

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _with_backoff(self, fn):
        # Most requests succeed on the first try but we wrap it locally here in case
        # there is some temporarily instability with the API. If there are longer periods
        # of instability, there should be system-wide retries in a daemon.
        return backoff.on_exception(
            backoff.expo,
            (TransientDashScopeError, httpx.TransportError),
            max_tries=self.max_retries,
            on_backoff=handle_backoff,
        )(fn)
