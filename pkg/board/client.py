"""
HTTP client for the board API.

Thin wrapper over a requests.Session that attaches the bearer token and
turns every non-2xx response (or network failure) into an ApiError
carrying the server's ``message`` verbatim.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A rejected or failed request. ``status`` is 0 for network errors."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.message = message
        self.status = status


class BoardClient:
    def __init__(self, base_url: str = "http://localhost:3000/api",
                 token: Optional[str] = None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, body: Any = None) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            r = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(f"Network error: {e}", 0) from e

        if not r.ok:
            try:
                message = r.json().get("message") or f"HTTP error! status: {r.status_code}"
            except ValueError:
                message = "An error occurred"
            raise ApiError(message, r.status_code)
        try:
            return r.json()
        except ValueError as e:
            logger.warning(f"{method} {path}: response is not JSON")
            raise ApiError("An error occurred", r.status_code) from e

    # ── Auth ─────────────────────────────────────────────────────────────

    def login(self, email: str, password: str) -> Dict:
        data = self._request("POST", "/auth/login", {"email": email, "password": password})
        self.token = data["token"]
        return data

    def register(self, username: str, email: str, password: str) -> Dict:
        data = self._request(
            "POST", "/auth/register",
            {"username": username, "email": email, "password": password},
        )
        self.token = data["token"]
        return data

    # ── Sticky notes ─────────────────────────────────────────────────────

    def list_notes(self) -> List[Dict]:
        return self._request("GET", "/sticky-notes")

    def create_note(self, text: str = "", color: str = "yellow") -> Dict:
        return self._request("POST", "/sticky-notes", {"text": text, "color": color})

    def update_note(self, note_id: str, **fields) -> Dict:
        return self._request("PUT", f"/sticky-notes/{note_id}", fields)

    def delete_note(self, note_id: str) -> Dict:
        return self._request("DELETE", f"/sticky-notes/{note_id}")

    def reorder_notes(self, ordered_ids: List[str]) -> List[Dict]:
        return self._request("PUT", "/sticky-notes/reorder", {"orderedIds": ordered_ids})

    # ── Tasks ────────────────────────────────────────────────────────────

    def list_tasks(self, status: Optional[str] = None) -> List[Dict]:
        path = "/tasks" if status is None else f"/tasks?status={status}"
        return self._request("GET", path)

    def create_task(self, title: str, **fields) -> Dict:
        return self._request("POST", "/tasks", dict(fields, title=title))

    def update_task(self, task_id: str, **fields) -> Dict:
        return self._request("PUT", f"/tasks/{task_id}", fields)

    def move_task(self, task_id: str, status: str, position: int) -> Dict:
        return self._request("PUT", f"/tasks/{task_id}", {"status": status, "position": position})

    def delete_task(self, task_id: str) -> Dict:
        return self._request("DELETE", f"/tasks/{task_id}")

    def reorder_tasks(self, status: str, ordered_ids: List[str]) -> List[Dict]:
        return self._request("PUT", "/tasks/reorder", {"status": status, "orderedIds": ordered_ids})

    # ── Calendar ─────────────────────────────────────────────────────────

    def list_calendar(self) -> List[Dict]:
        return self._request("GET", "/calendar-tasks")

    def create_calendar(self, title: str, date: str, time: str, description: str = "") -> Dict:
        return self._request(
            "POST", "/calendar-tasks",
            {"title": title, "date": date, "time": time, "description": description},
        )

    def update_calendar(self, entry_id: str, **fields) -> Dict:
        return self._request("PUT", f"/calendar-tasks/{entry_id}", fields)

    def delete_calendar(self, entry_id: str) -> Dict:
        return self._request("DELETE", f"/calendar-tasks/{entry_id}")
