"""Async client for the quiz-admin JSON API.

Cookies from :meth:`PackageApi.login` are kept on the underlying
``httpx.AsyncClient`` and sent with every later request. Ids may be passed
tagged or raw; they are always sent raw.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import EditorConfig
from .errors import AuthorizationError, NetworkError, NotFound, ServerError
from .identifiers import AnyId, strip_tag


LOGGER = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text.strip() or response.reason_phrase or f"HTTP {response.status_code}"


class PackageApi:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/api",
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: EditorConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PackageApi":
        return cls(config.api_base_url, timeout=config.request_timeout, transport=transport)

    async def __aenter__(self) -> "PackageApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            LOGGER.warning("%s %s timed out.", method, path)
            raise NetworkError(f"Request timed out: {method} {path}") from exc
        except httpx.TransportError as exc:
            LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"Could not reach the server: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise NotFound(_error_message(response))
        if status in (401, 403):
            raise AuthorizationError(_error_message(response), status)
        if status >= 400:
            raise ServerError(_error_message(response), status)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            LOGGER.warning("%s %s answered %s with a body that is not JSON.", method, path, status)
            raise ServerError(f"Unexpected response from {method} {path}.", status) from exc

    # Session

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/login", json={"username": username, "password": password}
        )

    async def logout(self) -> None:
        await self._request("POST", "/logout")

    # Packages

    async def get_package(self, package_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/packages/{int(package_id)}")

    async def update_package(self, package_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/packages/{int(package_id)}", json=fields)

    # Rounds

    async def create_round(
        self,
        *,
        package_id: int,
        name: str,
        description: str = "",
        question_count: int = 5,
        order_index: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "name": name,
            "description": description,
            "questionCount": question_count,
            "packageId": int(package_id),
        }
        if order_index is not None:
            body["orderIndex"] = order_index
        return await self._request("POST", "/rounds", json=body)

    async def update_round(self, round_id: AnyId, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/rounds/{strip_tag(round_id)}", json=fields)

    async def delete_round(self, round_id: AnyId) -> Dict[str, Any]:
        return await self._request("DELETE", f"/rounds/{strip_tag(round_id)}")

    async def add_question_to_round(
        self, round_id: AnyId, question_id: int, order_index: Optional[int] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"questionId": int(question_id)}
        if order_index is not None:
            body["orderIndex"] = order_index
        return await self._request("POST", f"/rounds/{strip_tag(round_id)}/questions", json=body)

    async def remove_question_from_round(self, round_id: AnyId, question_id: int) -> Dict[str, Any]:
        return await self._request(
            "DELETE", f"/rounds/{strip_tag(round_id)}/questions/{int(question_id)}"
        )

    async def save_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/round-questions/save-order", json=payload)

    # Questions

    async def update_question(self, question_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/questions/{int(question_id)}", json=fields)

    async def create_question(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/questions", json=fields)

    async def search_questions(self, query: str = "", page: int = 1, limit: int = 20) -> Dict[str, Any]:
        params = {"q": query, "page": page, "limit": limit}
        return await self._request("GET", "/questions", params=params)

    async def generate_questions(
        self,
        prompt: str,
        count: int,
        *,
        topic: Optional[str] = None,
        difficulty: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {"prompt": prompt, "count": count}
        if topic:
            body["topic"] = topic
        if difficulty:
            body["difficulty"] = difficulty
        return await self._request("POST", "/questions/generate", json=body)


__all__ = ["PackageApi"]
