"""Request context management for observability.

Context variables for request tracking across async boundaries.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# User ID - canonical user resolved from the session cookie (empty when anonymous)
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Auth channel handling the current request (phone, email, federated)
auth_channel_var: ContextVar[str] = ContextVar("auth_channel", default="")
