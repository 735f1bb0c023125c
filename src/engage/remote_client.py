"""
Remote Client - HTTP access to the Engage sync server.

Thin wrapper around a requests.Session:
- Bearer token authentication
- JSON bodies in and out
- Bounded timeout on every call
- Never raises: every call returns an ApiResponse with either data or an
  ApiError carrying a user-facing message and the HTTP status (0 for
  network failures and timeouts)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Network error occurred. Please check your connection."

STATUS_MESSAGES: Dict[int, str] = {
    400: "Invalid request. Please check your input.",
    401: "Authentication failed. Please log in again.",
    402: "Payment required. Please check your subscription.",
    403: "Access denied. You don't have permission for this action.",
    404: "Resource not found.",
    409: "Conflict. This resource already exists.",
    422: "Validation error. Please check your input.",
    429: "Too many requests. Please try again later.",
    500: "Server error. Please try again later.",
    502: "Bad gateway. The server is temporarily unavailable.",
    503: "Service unavailable. Please try again later.",
    504: "Gateway timeout. The request took too long.",
}


def error_message(status: int, data: Any = None) -> str:
    """
    User-facing message for an HTTP error status.

    Examples:
        >>> error_message(404)
        'Resource not found.'
        >>> error_message(418, {"message": "I'm a teapot"})
        "I'm a teapot"
        >>> error_message(418)
        'An error occurred (418)'
    """
    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"An error occurred ({status})"


@dataclass
class ApiError:
    message: str
    code: int
    details: Optional[str] = None

    @property
    def is_network_error(self) -> bool:
        return self.code == 0

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.code}: {self.details})"
        return f"{self.message} ({self.code})"


@dataclass
class ApiResponse:
    success: bool
    data: Any = None
    error: Optional[ApiError] = None

    @property
    def status_code(self) -> int:
        return self.error.code if self.error else 200

    @classmethod
    def ok(cls, data: Any = None) -> "ApiResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: int, message: Optional[str] = None, details: Optional[str] = None) -> "ApiResponse":
        return cls(success=False, error=ApiError(message or error_message(code), code, details))


class RemoteClient:
    """
    HTTP client for the sync server.

    Example:
        client = RemoteClient("http://localhost:2137", token="...")
        response = client.get("/sync/notes", params={"since": EPOCH, "limit": 100})
        if response.success:
            rows = response.data["data"]
        else:
            print(response.error.message)
    """

    def __init__(self,
                 base_url: str,
                 token: Optional[str] = None,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        """
        Args:
            base_url: Server root, e.g. http://localhost:2137
            token: Optional bearer token
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests inject mocks here)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        self.token = token
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"
        else:
            self._session.headers.pop("Authorization", None)

    def request(self,
                method: str,
                path: str,
                body: Any = None,
                params: Optional[Dict[str, Any]] = None,
                timeout: Optional[float] = None) -> ApiResponse:
        """
        Perform one HTTP call.

        Args:
            method: HTTP method
            path: Path below base_url (leading slash)
            body: JSON-serializable request body
            params: Query parameters
            timeout: Override of the client timeout

        Returns:
            ApiResponse; never raises for transport or HTTP errors
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=body,
                params=params,
                timeout=timeout if timeout is not None else self.timeout
            )
        except requests.RequestException as e:
            logger.debug(f"{method} {url} failed: {e}")
            return ApiResponse.fail(0, NETWORK_ERROR_MESSAGE, str(e))

        data = self._decode(response)
        if not response.ok:
            details = None
            if isinstance(data, str):
                details = data or None
            elif isinstance(data, dict):
                details = data.get("message") or data.get("error")
            logger.debug(f"{method} {url} -> {response.status_code}")
            return ApiResponse.fail(response.status_code, error_message(response.status_code, data), details)

        return ApiResponse.ok(data)

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None) -> ApiResponse:
        return self.request("POST", path, body=body)

    def put(self, path: str, body: Any = None) -> ApiResponse:
        return self.request("PUT", path, body=body)

    def delete(self, path: str) -> ApiResponse:
        return self.request("DELETE", path)

    def health(self, timeout: Optional[float] = None) -> bool:
        """True if GET /health answers with a 2xx status."""
        return self.request("GET", "/health", timeout=timeout).success

    def close(self) -> None:
        self._session.close()
