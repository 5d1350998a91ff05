#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Constants - Centralized configuration values and magic numbers.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# None

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# USERNAME_MAX_LENGTH: Longest accepted username.
# CHAT_MESSAGE_MAX_LENGTH: Longest accepted chat/conversation message.
# WS_MAX_MESSAGES_PER_WINDOW: Inbound WebSocket rate limit.
# NOTIFY_MAX_RETRIES: Retry limit for WS notifications.
# ... (various other constants)

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# None


# Profile
USERNAME_MAX_LENGTH = 30
NAME_MAX_LENGTH = 100
BIO_MAX_LENGTH = 500

# Messages
CHAT_MESSAGE_MAX_LENGTH = 2000
CONVERSATION_PAGE_LIMIT = 200  # Max messages returned per conversation read
STRANGER_ALIAS = "Stranger"  # Partner label in anonymous sessions

# Friend requests
FRIEND_REQUEST_LIST_LIMIT = 100

# WebSocket
WS_RATE_LIMIT_WINDOW_SECONDS = 1.0
WS_MAX_MESSAGES_PER_WINDOW = 20
WS_CLOSE_POLICY_VIOLATION = 1008

# Retry Logic
NOTIFY_MAX_RETRIES = 3
NOTIFY_RETRY_DELAY_SECONDS = 0.3
NOTIFY_TIMEOUT_SECONDS = 3.0

# Session end reasons
END_REASON_LEFT = "left"
END_REASON_DISCONNECT = "disconnect"
END_REASON_SHUTDOWN = "shutdown"

# Random chat sessions
PURGED_SESSION_MEMORY = 10000  # Purged session ids remembered for late end_session calls
