"""
Test helpers and fakes for the API service.
"""

from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse

from service_api.app.caching.store import ConnectionState
from shared.errors import CacheUnavailableError


class InMemoryStore:
    """
    Stand-in for RedisStore that keeps values in a dict and records calls.

    Set ``available=False`` to simulate a store that is down: every operation
    then behaves like RedisStore does when the connection is gone.
    """

    def __init__(self, available: bool = True, target: str = "memory:6379/0"):
        self.available = available
        self.target = target
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.calls: List[Tuple[str, ...]] = []
        self.state = ConnectionState.DISCONNECTED
        self.reconnecting = False

    def is_available(self) -> bool:
        return self.available and self.state is ConnectionState.READY

    async def connect(self) -> None:
        self.calls.append(("connect",))
        if not self.available:
            self.state = ConnectionState.ERROR
            raise CacheUnavailableError("Cache store unreachable", details={"target": self.target})
        self.state = ConnectionState.READY

    def start_reconnecting(self) -> None:
        self.reconnecting = True

    async def get(self, key: str) -> Optional[str]:
        self.calls.append(("get", key))
        if not self.is_available():
            return None
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        self.calls.append(("set", key))
        if not self.is_available():
            return False
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def flush_all(self) -> bool:
        self.calls.append(("flush_all",))
        if not self.is_available():
            return False
        self.data.clear()
        self.ttls.clear()
        return True

    async def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        self.state = ConnectionState.DISCONNECTED

    def operations(self) -> List[str]:
        """Names of the data operations received, in order."""
        return [call[0] for call in self.calls if call[0] in ("get", "set", "flush_all")]


class HandlerCounter:
    """Counts downstream handler invocations per route."""

    def __init__(self):
        self.counts: Dict[str, int] = {}

    def hit(self, name: str) -> None:
        self.counts[name] = self.counts.get(name, 0) + 1

    def __getitem__(self, name: str) -> int:
        return self.counts.get(name, 0)


def create_project_router(counter: HandlerCounter) -> APIRouter:
    """
    Minimal project/auth routes standing in for the business routers.

    Mounted under ``/api`` by ApiService.
    """
    router = APIRouter()
    projects: Dict[str, Dict[str, Any]] = {"123": {"id": "123"}}

    @router.get("/project/{project_id}")
    async def get_project(project_id: str):
        counter.hit("get_project")
        if project_id not in projects:
            return JSONResponse(status_code=404, content={"message": "Project not found"})
        return projects[project_id]

    @router.get("/project")
    async def list_projects():
        counter.hit("list_projects")
        return {"projects": list(projects.values())}

    @router.post("/project", status_code=201)
    async def create_project(payload: Dict[str, Any]):
        counter.hit("create_project")
        project_id = str(payload.get("id", len(projects) + 1))
        projects[project_id] = {"id": project_id, **payload}
        return projects[project_id]

    @router.get("/project/{project_id}/status")
    async def project_status(project_id: str):
        counter.hit("project_status")
        # Status set after the body is assembled
        response = JSONResponse(content={"id": project_id, "state": "accepted"})
        response.status_code = 202
        return response

    @router.get("/project/{project_id}/export")
    async def export_project(project_id: str):
        counter.hit("export_project")
        return PlainTextResponse(f"project {project_id}")

    @router.get("/project/{project_id}/report")
    async def project_report(project_id: str):
        counter.hit("project_report")
        raise RuntimeError("report backend unavailable")

    @router.get("/auth/login")
    async def login():
        counter.hit("login")
        return {"authenticated": False}

    return router
