"""HTTP client for the Job Relay read API"""

from typing import Any

import httpx

from .config_manager import config


class JobRelayAPIError(Exception):
    """Raised when the API is unreachable or answers with an error"""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class JobRelayClient:
    """Typed wrappers around the /v1 execution endpoints"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        api_config = config.get("api", {})
        self.base_url = (base_url or api_config.get("base_url", "")).rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=float(timeout or api_config.get("timeout", 30)),
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = self.client.get(f"/v1{path}", params=params)
        except httpx.RequestError as e:
            raise JobRelayAPIError(f"Connection failed: {e}") from None

        try:
            data = response.json()
        except ValueError:
            raise JobRelayAPIError(
                f"Invalid JSON response: {response.status_code}", response.status_code
            ) from None

        if response.status_code >= 400 or not data.get("ok", False):
            message = (data.get("error") or {}).get("message", "Request failed")
            raise JobRelayAPIError(message, response.status_code)

        return data.get("data")

    def health_check(self) -> dict[str, Any]:
        return self._get("/healthz")

    def get_execution(self, job_id: str) -> dict[str, Any]:
        return self._get(f"/jobs/executions/{job_id}")

    def list_executions(self, job_type: str, limit: int) -> dict[str, Any]:
        return self._get("/jobs/executions", {"type": job_type, "limit": limit})

    def list_failed(self, limit: int) -> dict[str, Any]:
        return self._get("/jobs/executions/failed", {"limit": limit})
