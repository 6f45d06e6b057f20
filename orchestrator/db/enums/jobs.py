"""Worker job enums."""

from enum import Enum


class JobType(str, Enum):
    """Kinds of claimed send work handed to the dispatcher."""

    EXECUTION_SEND = "execution"
    MESSAGE_SEND = "message"
    RECIPIENT_SEND = "recipient"
