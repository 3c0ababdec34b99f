from __future__ import annotations

import logging
from http.client import HTTPException
from typing import Any
from urllib.parse import quote, urlparse

from . import http_client
from .errors import ApiError, ConnectivityError, NotFoundError
from .models import Project, Session, projects_from_records, sessions_from_records

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3001/api"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class RemoteService:
    """Client for the remote persistence service.

    Every call is bounded by ``timeout_s``. Failures are reported as:

    - ConnectivityError: the server could not be reached or timed out,
      or a gateway answered 5xx without a structured body.
    - NotFoundError: 404 for an unknown id.
    - ApiError: any other rejection carrying a status (missing fields,
      unknown project, server-side failure with an ``error`` body).
    """

    def __init__(self, base_url: str = DEFAULT_API_URL, *, timeout_s: float = 5.0):
        self.base_url = http_client.build_base_url(base_url)
        if not urlparse(self.base_url).hostname:
            raise ValueError(f"invalid api url: {base_url!r}")
        self.timeout_s = timeout_s

    def _call(self, method: str, path: str, body: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            status, payload = http_client.request_json(
                method, url, body=body, timeout_s=self.timeout_s
            )
        except (OSError, HTTPException) as exc:
            raise ConnectivityError(f"{method} {path}: {exc}") from exc
        if 200 <= status < 300:
            return payload
        detail = payload.get("error") if isinstance(payload, dict) else None
        if status == 404:
            raise NotFoundError(str(detail or f"{path} not found"))
        if status >= 500 and not detail:
            raise ConnectivityError(f"{method} {path}: upstream returned {status}")
        raise ApiError(str(detail or f"request failed with status {status}"), status=status)

    def _call_list(self, path: str) -> list[dict[str, Any]]:
        payload = self._call("GET", path)
        if not isinstance(payload, list):
            raise ApiError(f"expected a list from {path}", status=200)
        return [item for item in payload if isinstance(item, dict)]

    def _call_object(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
        payload = self._call(method, path, body)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ApiError(f"expected an object from {path}", status=200)
        return payload

    def ping(self) -> bool:
        try:
            self._call("GET", "/settings")
        except ConnectivityError:
            return False
        except ApiError as exc:
            logger.debug("ping reached server but it answered %s", exc.status)
        return True

    # Projects

    def list_projects(self) -> list[Project]:
        return projects_from_records(self._call_list("/projects"))

    def get_project(self, project_id: str) -> Project:
        return Project.from_dict(self._call_object("GET", f"/projects/{_segment(project_id)}"))

    def create_project(self, project: Project) -> str:
        payload = self._call_object("POST", "/projects", project.to_dict())
        return str(payload.get("id") or project.id)

    def update_project(self, project: Project) -> str:
        payload = self._call_object(
            "PUT", f"/projects/{_segment(project.id)}", project.to_dict()
        )
        return str(payload.get("id") or project.id)

    def delete_project(self, project_id: str) -> None:
        self._call("DELETE", f"/projects/{_segment(project_id)}")

    # Sessions

    def list_sessions(self) -> list[Session]:
        return sessions_from_records(self._call_list("/sessions"))

    def list_sessions_by_project(self, project_id: str) -> list[Session]:
        return sessions_from_records(self._call_list(f"/sessions/project/{_segment(project_id)}"))

    def get_session(self, session_id: str) -> Session:
        return Session.from_dict(self._call_object("GET", f"/sessions/{_segment(session_id)}"))

    def create_session(self, session: Session) -> str:
        payload = self._call_object("POST", "/sessions", session.to_dict())
        return str(payload.get("id") or session.id)

    def update_session(self, session: Session) -> str:
        payload = self._call_object(
            "PUT", f"/sessions/{_segment(session.id)}", session.to_dict()
        )
        return str(payload.get("id") or session.id)

    def delete_session(self, session_id: str) -> None:
        self._call("DELETE", f"/sessions/{_segment(session_id)}")

    # Active sessions

    def list_active_sessions(self) -> list[Session]:
        return sessions_from_records(self._call_list("/sessions/active"))

    def upsert_active_session(self, session: Session, *, elapsed: int | None = None) -> str:
        body = session.to_dict()
        body["status"] = "active"
        body["endTime"] = None
        if elapsed is not None:
            body["elapsedTime"] = int(elapsed)
        payload = self._call_object("POST", "/sessions/active", body)
        return str(payload.get("id") or session.id)

    def complete_active_session(self, session_id: str, end_time: str, duration: int) -> str:
        payload = self._call_object(
            "POST",
            f"/sessions/active/{_segment(session_id)}/complete",
            {"endTime": end_time, "duration": int(duration)},
        )
        return str(payload.get("id") or session_id)

    # Settings

    def get_settings(self) -> dict[str, str]:
        payload = self._call_object("GET", "/settings")
        return {str(k): str(v) for k, v in payload.items()}

    def get_setting(self, key: str) -> str:
        payload = self._call_object("GET", f"/settings/{_segment(key)}")
        if "value" not in payload:
            raise ApiError(f"setting {key} has no value", status=200)
        return str(payload["value"])

    def put_setting(self, key: str, value: str) -> None:
        self._call_object("PUT", f"/settings/{_segment(key)}", {"value": value})
