"""HTTP transport for the admin API: envelopes in, data or JobCtlError out"""

import uuid
from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()

REQUEST_ID_HEADER = "X-Request-ID"


class JobCtlError(Exception):
    """Raised for any failed admin API call"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(body: Any) -> str:
    """Best human-readable message from an error body.

    Understands the admin API's ``{ok: false, error: {...}}`` envelope,
    including its request-validation details, and FastAPI's bare
    ``{"detail": ...}`` shape.
    """
    if not isinstance(body, dict):
        return "Unknown error"

    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message") or "Request failed"
        problems = (error.get("details") or {}).get("errors") or []
        fields = [
            ".".join(str(part) for part in problem.get("loc", [])[1:])
            for problem in problems
            if isinstance(problem, dict)
        ]
        fields = [field for field in fields if field]
        if fields:
            message = f"{message} ({', '.join(fields)})"
        return message

    detail = body.get("detail")
    if isinstance(detail, list):
        return "; ".join(
            str(item.get("msg", item)) if isinstance(item, dict) else str(item)
            for item in detail
        )
    return str(detail) if detail else "Unknown error"


class APIClient:
    """Thin synchronous client for the ``/v1`` admin API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.base_url}/v1",
            timeout=timeout,
            headers=headers or {},
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send one request tagged with a fresh request id and unwrap it"""
        headers = {REQUEST_ID_HEADER: str(uuid.uuid4()), **kwargs.pop("headers", {})}
        try:
            response = self.client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise JobCtlError(f"Connection failed: {e}") from None
        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise JobCtlError(
                f"Invalid JSON response: {response.status_code}",
                response.status_code,
            ) from None

        if response.is_error:
            message = _error_message(body)
            request_id = response.headers.get(REQUEST_ID_HEADER)
            footer = f"\n[dim]request {request_id}[/dim]" if request_id else ""
            console.print(Panel(f"[red]{message}[/red]{footer}", title="API Error"))
            raise JobCtlError(
                f"API Error {response.status_code}: {message}", response.status_code
            )

        if isinstance(body, dict) and "ok" in body:
            if not body["ok"]:
                message = _error_message(body)
                console.print(Panel(f"[red]{message}[/red]", title="Request Failed"))
                raise JobCtlError(message, response.status_code)
            return body.get("data")

        return body

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.request("POST", path, json=json, params=params)
