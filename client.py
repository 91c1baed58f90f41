# client.py

"""
HTTP client for the Taskify API.

The bearer token lives in an explicit `Session` owned by the caller, not in
ambient storage. A 401 on a protected call clears the session and raises
`SessionExpired`, which is the cue to log in again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class SessionExpired(ApiError):
    pass


@dataclass(slots=True)
class Session:
    token: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def active(self) -> bool:
        return bool(self.token)

    def clear(self) -> None:
        self.token = None
        self.user_id = None
        self.email = None


class TaskifyClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[Session] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.session = session or Session()
        self._http = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "TaskifyClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---- low-level ----

    def _request(self, method: str, path: str, *, auth: bool = True, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if auth:
            if not self.session.active:
                raise SessionExpired(401, "Not logged in")
            headers["Authorization"] = f"Bearer {self.session.token}"

        resp = self._http.request(method, path, headers=headers, **kwargs)

        if resp.status_code == 401 and auth:
            logger.info("Session rejected on %s %s; clearing token", method, path)
            self.session.clear()
            raise SessionExpired(401, _detail(resp))
        if resp.is_error:
            raise ApiError(resp.status_code, _detail(resp))
        return resp.json()

    def _start_session(self, data: Dict[str, Any]) -> Session:
        self.session.token = data["token"]
        self.session.user_id = data["id"]
        self.session.email = data["email"]
        return self.session

    # ---- users ----

    def register(self, email: str, password: str) -> Session:
        data = self._request("POST", "/users", auth=False, json={"email": email, "password": password})
        return self._start_session(data)

    def login(self, email: str, password: str) -> Session:
        data = self._request("POST", "/users/login", auth=False, json={"email": email, "password": password})
        return self._start_session(data)

    def logout(self) -> None:
        self.session.clear()

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/users/me")

    # ---- tasks ----

    def list_tasks(self, **filters: Optional[str]) -> List[Dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._request("GET", "/tasks", params=params)

    def create_task(self, **fields: Any) -> Dict[str, Any]:
        return self._request("POST", "/tasks", json=fields)

    def get_task(self, task_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/tasks/{task_id}")

    def replace_task(self, task_id: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PUT", f"/tasks/{task_id}", json=fields)

    def update_task(self, task_id: str, **changes: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/tasks/{task_id}", json=changes)

    def delete_task(self, task_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/tasks/{task_id}")

    # ---- notifications / progress ----

    def notifications(self) -> Dict[str, List[Dict[str, Any]]]:
        return self._request("GET", "/notifications")

    def mark_notifications_read(self) -> Dict[str, Any]:
        return self._request("PUT", "/notifications/mark-read")

    def progress(self) -> Dict[str, int]:
        return self._request("GET", "/progress")

    def category_progress(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/progress/categories")

    # ---- topics ----

    def list_topics(self, sort: str = "default") -> List[Dict[str, Any]]:
        return self._request("GET", "/topics", params={"sort": sort})

    def create_topic(self, title: str, **fields: Any) -> Dict[str, Any]:
        return self._request("POST", "/topics", json={"title": title, **fields})

    def get_topic(self, topic_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/topics/{topic_id}")

    def replace_topic(self, topic_id: str, title: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PUT", f"/topics/{topic_id}", json={"title": title, **fields})

    def update_topic(self, topic_id: str, **changes: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/topics/{topic_id}", json=changes)

    def delete_topic(self, topic_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/topics/{topic_id}")

    def add_subtopic(self, topic_id: str, title: str) -> Dict[str, Any]:
        return self._request("POST", f"/topics/{topic_id}/subtopics", json={"title": title})

    def toggle_subtopic(self, topic_id: str, subtopic_id: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/topics/{topic_id}/subtopics/{subtopic_id}")

    def attach_topic_pdf(self, topic_id: str, filename: str, content: bytes) -> Dict[str, Any]:
        files = {"file": (filename, content, "application/pdf")}
        return self._request("POST", f"/topics/{topic_id}/attachment", files=files)

    def attach_pdf(self, topic_id: str, subtopic_id: str, filename: str, content: bytes) -> Dict[str, Any]:
        files = {"file": (filename, content, "application/pdf")}
        return self._request("POST", f"/topics/{topic_id}/subtopics/{subtopic_id}/attachment", files=files)


def poll_notifications(
    client: TaskifyClient,
    *,
    interval_seconds: float = 60.0,
    iterations: Optional[int] = None,
    on_update: Optional[Callable[[Dict[str, Any]], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[Dict[str, Any]]:
    """
    Fetch notifications on a fixed interval. Each result replaces the previous
    one; there is no backoff. Fetch errors keep the last good result.
    SessionExpired stops polling.
    """
    latest: Optional[Dict[str, Any]] = None
    n = 0
    while iterations is None or n < iterations:
        if n:
            sleep(interval_seconds)
        n += 1
        try:
            latest = client.notifications()
        except SessionExpired:
            raise
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("Notification poll failed: %s", e)
            continue
        if on_update is not None:
            on_update(latest)
    return latest


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)
