"""Python client for the TrackIt API.

Mirrors the browser client's network layer: tokens are kept in a
``TokenStore``, every call carries the access token, and a 401 triggers a
single refresh followed by one replay of the original call. If that fails
the stored session is cleared and ``SessionExpired`` is raised so the caller
can ask the user to log in again.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        self.status_code = status_code
        self.payload = payload
        super().__init__(payload.get("message") or f"HTTP {status_code}")


class SessionExpired(ApiError):
    pass


class TokenStore(Protocol):
    def load(self) -> Optional[dict[str, str]]: ...

    def save(self, tokens: dict[str, str]) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    def __init__(self) -> None:
        self._tokens: Optional[dict[str, str]] = None

    def load(self) -> Optional[dict[str, str]]:
        return dict(self._tokens) if self._tokens else None

    def save(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    def clear(self) -> None:
        self._tokens = None


class FileTokenStore:
    """Persists tokens as JSON, the equivalent of the browser's localStorage."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[dict[str, str]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None

    def save(self, tokens: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(tokens), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class TrackItClient:
    def __init__(
        self,
        http: httpx.Client,
        store: Optional[TokenStore] = None,
    ) -> None:
        self.http = http
        self.store = store or MemoryTokenStore()

    @classmethod
    def connect(cls, base_url: str, store: Optional[TokenStore] = None, **kwargs):
        return cls(httpx.Client(base_url=base_url, **kwargs), store)

    # session -------------------------------------------------------------

    def _remember(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.store.save(
            {"token": payload["token"], "refreshToken": payload["refreshToken"]}
        )
        return payload

    def register(self, name: str, email: str, password: str) -> dict[str, Any]:
        payload = self._send(
            "POST",
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
            authenticated=False,
        )
        return self._remember(payload)

    def login(self, email: str, password: str) -> dict[str, Any]:
        payload = self._send(
            "POST",
            "/api/auth/login",
            json={"email": email, "password": password},
            authenticated=False,
        )
        return self._remember(payload)

    def logout(self) -> None:
        try:
            if self.store.load():
                self.request("POST", "/api/auth/logout")
        finally:
            self.store.clear()

    def refresh(self) -> bool:
        tokens = self.store.load()
        if not tokens or not tokens.get("refreshToken"):
            return False
        response = self.http.post(
            "/api/auth/refresh-token",
            json={"refreshToken": tokens["refreshToken"]},
        )
        if response.status_code != 200:
            logger.info(f"token_refresh_failed: status={response.status_code}")
            return False
        self._remember(response.json())
        return True

    # transport -----------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        tokens = self.store.load()
        if tokens and tokens.get("token"):
            return {"Authorization": f"Bearer {tokens['token']}"}
        return {}

    def _send(
        self, method: str, url: str, *, authenticated: bool = True, **kwargs
    ) -> dict[str, Any]:
        headers = self._headers() if authenticated else {}
        response = self.http.request(method, url, headers=headers, **kwargs)
        payload = _json(response)
        if response.status_code >= 400:
            raise ApiError(response.status_code, payload)
        return payload

    def request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            return self._send(method, url, **kwargs)
        except ApiError as exc:
            if exc.status_code != 401:
                raise
            if not self.refresh():
                self.store.clear()
                raise SessionExpired(exc.status_code, exc.payload) from exc

        try:
            return self._send(method, url, **kwargs)
        except ApiError as exc:
            if exc.status_code == 401:
                self.store.clear()
                raise SessionExpired(exc.status_code, exc.payload) from exc
            raise

    # api -----------------------------------------------------------------

    def profile(self) -> dict[str, Any]:
        return self.request("GET", "/api/auth/profile")["user"]

    def update_profile(self, **fields: str) -> dict[str, Any]:
        return self.request("PUT", "/api/auth/profile", json=fields)["user"]

    def change_password(self, current_password: str, new_password: str) -> None:
        self.request(
            "PUT",
            "/api/auth/change-password",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    def forgot_password(self, email: str) -> str:
        payload = self._send(
            "POST",
            "/api/auth/forgot-password",
            json={"email": email},
            authenticated=False,
        )
        return payload["message"]

    def reset_password(self, token: str, new_password: str) -> None:
        self._send(
            "POST",
            "/api/auth/reset-password",
            json={"token": token, "newPassword": new_password},
            authenticated=False,
        )

    def create_transaction(self, **fields: Any) -> dict[str, Any]:
        return self.request("POST", "/api/transactions", json=fields)["transaction"]

    def list_transactions(self, **params: Any) -> dict[str, Any]:
        return self.request("GET", "/api/transactions", params=params)

    def get_transaction(self, transaction_id: int) -> dict[str, Any]:
        url = f"/api/transactions/{transaction_id}"
        return self.request("GET", url)["transaction"]

    def update_transaction(self, transaction_id: int, **fields: Any) -> dict[str, Any]:
        url = f"/api/transactions/{transaction_id}"
        return self.request("PUT", url, json=fields)["transaction"]

    def delete_transaction(self, transaction_id: int) -> None:
        self.request("DELETE", f"/api/transactions/{transaction_id}")

    def bulk_delete(self, transaction_ids: list[int]) -> int:
        payload = self.request(
            "DELETE",
            "/api/transactions/bulk",
            json={"transactionIds": transaction_ids},
        )
        return payload["deletedCount"]

    def stats(self, period: str = "all") -> dict[str, Any]:
        return self.request("GET", "/api/transactions/stats", params={"period": period})

    def categories(self) -> list[dict[str, Any]]:
        return self.request("GET", "/api/transactions/categories")["categories"]


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text}
    return payload if isinstance(payload, dict) else {"data": payload}
