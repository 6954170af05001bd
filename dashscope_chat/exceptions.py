class DashScopeAPIError(Exception):
    """
    Raised when DashScope responds with a non-successful status code

    """

    def __init__(self, status_code: int, body: str):
        super().__init__(f"DashScope request failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class TransientDashScopeError(DashScopeAPIError):
    """
    Rate limits and server side failures. These are retried before surfacing to the caller.

    """


class MultipleToolCallsError(Exception):
    """
    A single streamed delta contained more than one tool call

    """

    def __init__(self, tool_call_count: int):
        super().__init__(
            f"Only one tool call is supported per streamed message, received {tool_call_count}"
        )
        self.tool_call_count = tool_call_count


class UnsupportedMediaTypeError(Exception):
    """
    Media payloads must be raw bytes or an already encoded url string

    """

    def __init__(self, media_data: object):
        super().__init__(
            f"Unsupported media data type: {type(media_data).__name__}"
        )
        self.media_type = type(media_data)


class InvalidFunctionResponse(Exception):
    """
    The model passed an invalid function name back to the caller

    """

    def __init__(self, invalid_function_name: str | None):
        super().__init__(f"Invalid function name: {invalid_function_name}")
        self.invalid_function_name = invalid_function_name


class InvalidFunctionParameters(Exception):
    """
    The model passed invalid function parameters back to the caller

    """

    def __init__(self, invalid_function_name: str, invalid_parameters: str | None):
        super().__init__(f"Invalid function parameters: {invalid_parameters}")
        self.invalid_function_name = invalid_function_name
        self.invalid_parameters = invalid_parameters
