#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Text utilities - Validation of user supplied message text.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# clean_message_text: Strips and validates a chat or conversation message.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# parley.constants: Length limit.
# parley.exceptions: ValidationError.

from parley.constants import CHAT_MESSAGE_MAX_LENGTH
from parley.exceptions import ValidationError


def clean_message_text(text) -> str:
    if not isinstance(text, str):
        raise ValidationError("Message text must be a string")
    text = text.strip()
    if not text:
        raise ValidationError("Message text is empty")
    if len(text) > CHAT_MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message exceeds {CHAT_MESSAGE_MAX_LENGTH} characters",
            context={"length": len(text)}
        )
    return text
