"""
Hosts
=====

A host is the transport collaborator of one request. It hands the already
decoded request body to the application and receives either the finished
response or the error. The engine never parses a wire protocol itself.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional


class Host(ABC):
    """
    Transport collaborator for a single inbound request.

    Only the first call to set_response() or fail() is honoured; later calls
    are ignored once something has been sent.
    """

    def __init__(self) -> None:
        self.responded = False

    @abstractmethod
    def get_request_object(self) -> Mapping[str, Any]:
        """Decoded request body."""

    def get_request_headers(self) -> Dict[str, str]:
        return {}

    def get_query_params(self) -> Dict[str, str]:
        return {}

    async def set_response(self, response: Any) -> None:
        if self.responded:
            return
        self.responded = True
        await self.send_response(response)

    async def fail(self, error: BaseException) -> None:
        if self.responded:
            return
        self.responded = True
        await self.send_error(error)

    @abstractmethod
    async def send_response(self, response: Any) -> None:
        """Deliver the finalized response payload."""

    @abstractmethod
    async def send_error(self, error: BaseException) -> None:
        """Report an unhandled failure."""


class InMemoryHost(Host):
    """Host keeping the outcome in memory, for tests and local runs."""

    def __init__(
        self,
        payload: Mapping[str, Any],
        headers: Optional[Dict[str, str]] = None,
        query: Optional[Dict[str, str]] = None,
    ):
        super().__init__()
        self.payload = payload
        self.headers = headers or {}
        self.query = query or {}
        self.response: Any = None
        self.error: Optional[BaseException] = None
        self.status_code: Optional[int] = None

    def get_request_object(self) -> Mapping[str, Any]:
        return self.payload

    def get_request_headers(self) -> Dict[str, str]:
        return self.headers

    def get_query_params(self) -> Dict[str, str]:
        return self.query

    async def send_response(self, response: Any) -> None:
        self.response = response
        self.status_code = 200

    async def send_error(self, error: BaseException) -> None:
        self.error = error
        self.status_code = 500


__all__ = ["Host", "InMemoryHost"]
