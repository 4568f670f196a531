"""
Exception types raised by the network and exchange layers
"""

from typing import Optional


class PolymirrorError(Exception):
    """Base error for the mirror trading system"""


class FetchError(PolymirrorError):
    """An outbound read failed"""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url


class NetworkError(FetchError):
    """Network-class failure that survived every retry"""

    def __init__(self, url: str, code: str, attempts: int):
        super().__init__(url, f"Network error {code} after {attempts} attempt(s)")
        self.code = code
        self.attempts = attempts


class HTTPStatusError(FetchError):
    """The server answered with an error status; never retried"""

    def __init__(self, url: str, status: int, body: str = "", reason: str = ""):
        super().__init__(url, f"HTTP {status} {reason}".strip())
        self.status = status
        self.body = body
        self.reason = reason

    def as_response(self) -> dict:
        """Shape the failure like an order response for classification"""
        return {
            "success": False,
            "status": self.status,
            "statusText": self.reason,
            "data": self.body,
        }


class ExchangeError(PolymirrorError):
    """The exchange SDK raised while reading venue state"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
