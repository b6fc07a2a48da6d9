from .request_id import RequestIDMiddleware, bind_account_id, client_ip_of
from .logging import LoggingMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "bind_account_id",
    "client_ip_of",
]
