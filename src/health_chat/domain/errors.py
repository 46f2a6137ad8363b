"""Error taxonomy of the chat core.

Every error carries a ``notice`` key naming the localized message shown to
the user when the error reaches an interactive boundary.
"""


class ChatError(Exception):
    """Base class for all chat core errors."""

    notice = "generic_failure"


class ValidationError(ChatError):
    """User input rejected locally; never reaches the network."""

    notice = "empty_message"


class StoreError(ChatError):
    """Local persistence failed."""

    notice = "save_failed"


class GatewayError(ChatError):
    """The remote inference service could not be reached or answered non-2xx."""

    notice = "send_failed"


class MalformedReplyError(GatewayError):
    """The remote service answered, but not with the structured data requested."""

    notice = "prediction_failed"

    def __init__(self, message: str, raw_reply: str = ""):
        super().__init__(message)
        self.raw_reply = raw_reply
