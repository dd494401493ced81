"""Pydantic models for PortKeeper state, API payloads and persisted preferences"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)


class ProcessType(str, Enum):
    """Process classification enum"""
    WEB_SERVER = "web_server"
    DATABASE = "database"
    DEVELOPMENT = "development"
    SYSTEM = "system"
    OTHER = "other"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class WatchDirection(str, Enum):
    """Direction of a watched port transition"""
    APPEARED = "appeared"
    DISAPPEARED = "disappeared"


class TerminationOutcome(str, Enum):
    """Outcome of a termination request"""
    SUCCESS = "success"
    PERMISSION_DENIED = "permission_denied"
    NO_SUCH_PROCESS = "no_such_process"
    ERROR = "error"


class SidebarKind(str, Enum):
    """Sidebar category enum"""
    ALL = "all"
    FAVORITES = "favorites"
    WATCHED = "watched"
    PROCESS_TYPE = "process_type"


@dataclass
class RawListenerRecord:
    """One unvalidated listener row as reported by a snapshot source"""
    process_name: Optional[str] = None
    pid: Optional[str] = None
    user: Optional[str] = None
    fd: Optional[str] = None
    address: Optional[str] = None
    port: Optional[str] = None
    command: Optional[str] = None


# Snapshot Models
class PortInfo(BaseModel):
    """One observed listening socket bound to a process"""
    model_config = ConfigDict(frozen=True)

    port: int = Field(..., gt=0, le=65535, description="Listening port number")
    pid: int = Field(..., gt=0, description="Owning process id")
    process_name: str = Field(..., min_length=1, description="Short executable name")
    command: str = Field(default="", description="Full command line")
    address: str = Field(default="*", description="Bound address")
    user: str = Field(default="")
    fd: str = Field(default="", description="File descriptor label from the source tool")
    process_type: ProcessType = Field(default=ProcessType.OTHER)

    @computed_field
    @property
    def id(self) -> str:
        return f"{self.port}-{self.address}-{self.pid}"

    @property
    def key(self):
        """Deduplication key within one snapshot"""
        return (self.port, self.address, self.pid)


class ProcessGroup(BaseModel):
    """All listening ports owned by one pid"""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Owning pid")
    process_name: str
    ports: List[PortInfo] = Field(default_factory=list)
    related_pids: FrozenSet[int] = Field(default_factory=frozenset)

    @computed_field
    @property
    def has_related_processes(self) -> bool:
        return len(self.related_pids) > 1

    @field_serializer("related_pids")
    def serialize_related_pids(self, related_pids: FrozenSet[int]) -> List[int]:
        return sorted(related_pids)


# Watch Models
class WatchedPort(BaseModel):
    """A port number the user wants presence notifications for"""
    model_config = ConfigDict(frozen=True)

    port: int = Field(..., gt=0, le=65535)
    notify_on_start: bool = Field(default=True)
    notify_on_stop: bool = Field(default=True)

    def wants(self, direction: WatchDirection) -> bool:
        if direction == WatchDirection.APPEARED:
            return self.notify_on_start
        return self.notify_on_stop


class WatchEvent(BaseModel):
    """Presence change of a watched port between two snapshots"""
    port: int
    direction: WatchDirection
    process_name: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


# Filter Models
class PortFilter(BaseModel):
    """Port range and text filter applied to the snapshot"""
    min_port: Optional[int] = Field(None, gt=0, le=65535)
    max_port: Optional[int] = Field(None, gt=0, le=65535)
    search_text: str = Field(default="")

    @field_validator("search_text")
    @classmethod
    def strip_search_text(cls, v: str) -> str:
        return v.strip()

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_port is not None and self.max_port is not None and self.min_port > self.max_port:
            raise ValueError("min_port must not be greater than max_port")
        return self

    @property
    def is_active(self) -> bool:
        return self.min_port is not None or self.max_port is not None or bool(self.search_text)

    def reset(self):
        """Clear both bounds and the search text"""
        self.min_port = None
        self.max_port = None
        self.search_text = ""

    def matches(self, port_info: PortInfo) -> bool:
        if self.min_port is not None and port_info.port < self.min_port:
            return False
        if self.max_port is not None and port_info.port > self.max_port:
            return False
        if self.search_text:
            needle = self.search_text.lower()
            if needle not in str(port_info.port) and needle not in port_info.process_name.lower():
                return False
        return True


class SidebarItem(BaseModel):
    """Selected sidebar category"""
    model_config = ConfigDict(frozen=True)

    kind: SidebarKind = Field(default=SidebarKind.ALL)
    process_type: Optional[ProcessType] = None

    @model_validator(mode="after")
    def check_process_type(self):
        if self.kind == SidebarKind.PROCESS_TYPE and self.process_type is None:
            raise ValueError("process_type is required for the process_type sidebar item")
        if self.kind != SidebarKind.PROCESS_TYPE and self.process_type is not None:
            raise ValueError("process_type is only valid for the process_type sidebar item")
        return self


# Termination Models
class TerminationResult(BaseModel):
    """Result of sending a signal to a process"""
    pid: int
    signal: str
    outcome: TerminationOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == TerminationOutcome.SUCCESS


# Persisted Preferences
class Preferences(BaseModel):
    """User preferences persisted across restarts"""
    favorites: Set[int] = Field(default_factory=set)
    watched_ports: List[WatchedPort] = Field(default_factory=list)
    use_tree_view: bool = Field(default=False)


# API Request Models
class PortRequest(BaseModel):
    """Request body naming a single port"""
    port: int = Field(..., gt=0, le=65535)


class WatchRequest(PortRequest):
    """Request body for toggling a watched port"""
    notify_on_start: bool = Field(default=True)
    notify_on_stop: bool = Field(default=True)


class KillRequest(BaseModel):
    """Request body for terminating the owner of a port"""
    port_id: Optional[str] = None
    pid: Optional[int] = Field(None, gt=0)
    force: bool = Field(default=False)

    @model_validator(mode="after")
    def check_target(self):
        if not self.port_id and self.pid is None:
            raise ValueError("Either port_id or pid is required")
        return self


class KillAllRequest(BaseModel):
    """Request body for terminating every process in the filtered view"""
    force: bool = Field(default=False)


class SelectionRequest(BaseModel):
    """Request body for updating UI selection state"""
    selected_port_id: Optional[str] = None
    sidebar: Optional[SidebarItem] = None
    use_tree_view: Optional[bool] = None


class TunnelRequest(PortRequest):
    """Request body for opening a tunnel to a local port"""
