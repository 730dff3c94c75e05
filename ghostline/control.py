"""
Boundary to the controlled system.

The bot never owns control-system state: it issues named commands and reads
status/metric snapshots. Snapshots are parsed into pydantic models so a
missing or malformed field degrades to a default instead of a crash deep in
the formatting code.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .logging_config import get_logger

logger = get_logger("ghostline.control")


class ControlSystemError(Exception):
    """The control system could not be reached or returned garbage."""


@dataclass
class CommandResult:
    success: bool
    message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CommandResult":
        return cls(
            success=bool(data.get("success", False)),
            message=str(data.get("message", "") or ""),
        )

    @classmethod
    def coerce(cls, value: Union["CommandResult", Mapping[str, Any]]) -> "CommandResult":
        if isinstance(value, CommandResult):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise ControlSystemError(f"Unexpected command result type: {type(value).__name__}")

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


@runtime_checkable
class ControlSystem(Protocol):
    """What the remote-control surface needs from the controlled system."""

    async def execute_command(self, name: str) -> Union[CommandResult, Mapping[str, Any]]:
        ...

    async def get_system_status(self) -> Mapping[str, Any]:
        ...

    async def get_detailed_metrics(self) -> Mapping[str, Any]:
        ...


# ─── Snapshot models ──────────────────────────────────────────────────────


class _Snapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class ModuleStatus(_Snapshot):
    status: Optional[str] = None
    earnings: float = 0.0


class SecuritySummary(_Snapshot):
    events: int = 0


class SystemStatus(_Snapshot):
    runtime: Optional[str] = None
    status: Optional[str] = None
    version: Optional[str] = None
    modules: Dict[str, ModuleStatus] = Field(default_factory=dict)
    security: SecuritySummary = Field(default_factory=SecuritySummary)

    def module(self, name: str) -> ModuleStatus:
        return self.modules.get(name) or ModuleStatus()


class SystemMetrics(_Snapshot):
    uptime: float = 0.0  # milliseconds
    active_modules: int = Field(0, alias="activeModules")


class SecurityMetrics(_Snapshot):
    security_level: Optional[str] = Field(None, alias="securityLevel")


class ScrapingMetrics(_Snapshot):
    success_rate: Optional[str] = Field(None, alias="successRate")


class HarvesterMetrics(_Snapshot):
    tasks_completed: int = Field(0, alias="tasksCompleted")
    total_earnings: float = Field(0.0, alias="totalEarnings")
    success_rate: Optional[str] = Field(None, alias="successRate")
    scraping: ScrapingMetrics = Field(default_factory=ScrapingMetrics)


class PerformanceMetrics(_Snapshot):
    tasks_per_hour: Optional[str] = Field(None, alias="tasksPerHour")
    hourly_earnings: Optional[str] = Field(None, alias="hourlyEarnings")
    success_rate: Optional[str] = Field(None, alias="successRate")


class DetailedMetrics(_Snapshot):
    system: SystemMetrics = Field(default_factory=SystemMetrics)
    security: SecurityMetrics = Field(default_factory=SecurityMetrics)
    harvester: HarvesterMetrics = Field(default_factory=HarvesterMetrics)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)


# ─── HTTP adapter ─────────────────────────────────────────────────────────


class HttpControlSystem:
    """
    Control system reached over its HTTP API.

    Endpoints:
        GET  /status            -> system status snapshot
        GET  /metrics           -> detailed metrics snapshot
        POST /commands/{name}   -> {"success": bool, "message": str}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(self, method: str, path: str) -> Any:
        try:
            response = await self._client.request(method, path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ControlSystemError(f"{method} {path} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ControlSystemError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise ControlSystemError(f"{method} {path} returned invalid JSON") from e

    async def execute_command(self, name: str) -> CommandResult:
        logger.info(f"Executing control command: {name}")
        data = await self._request("POST", f"/commands/{name}")
        return CommandResult.coerce(data)

    async def get_system_status(self) -> Mapping[str, Any]:
        return await self._request("GET", "/status")

    async def get_detailed_metrics(self) -> Mapping[str, Any]:
        return await self._request("GET", "/metrics")

    async def aclose(self):
        await self._client.aclose()
