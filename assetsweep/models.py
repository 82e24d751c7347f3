from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

UNKNOWN = "Unknown"


def new_id() -> str:
    return uuid.uuid4().hex


def is_known(value: Any) -> bool:
    """True when a probe actually determined ``value``."""
    if value is None:
        return False
    if isinstance(value, Enum):
        value = value.value
    text = str(value).strip()
    return bool(text) and text.lower() != "unknown"


class JobStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class AssetType(str, Enum):
    WINDOWS = "WINDOWS"
    LINUX = "LINUX"
    MAC = "MAC"
    NETWORK_DEVICE = "NETWORK_DEVICE"
    UNKNOWN = "UNKNOWN"


class ScanJobRequest(BaseModel):
    name: str
    description: Optional[str] = None
    ip_addresses: List[str] = Field(default_factory=list)
    ip_segments: List[str] = Field(default_factory=list)
    recurring: bool = False
    schedule: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()


class ScanJob(BaseModel):
    id: str = Field(default_factory=new_id)
    owner: str
    name: str
    description: Optional[str] = None
    ip_addresses: List[str] = Field(default_factory=list)
    ip_segments: List[str] = Field(default_factory=list)
    recurring: bool = False
    schedule: Optional[str] = None
    status: JobStatus = JobStatus.CREATED
    total_targets: int = 0
    completed_targets: int = 0
    successful_targets: int = 0
    failed_targets: int = 0
    created_at: float = Field(default_factory=time.time)
    last_run_at: Optional[float] = None
    next_run_at: Optional[float] = None


class ScanResult(BaseModel):
    id: str = Field(default_factory=new_id)
    job_id: str
    asset_id: Optional[str] = None
    address: str
    hostname: Optional[str] = None
    successful: bool = False
    error: Optional[str] = None
    scanned_at: float = Field(default_factory=time.time)
    data: Dict[str, Any] = Field(default_factory=dict)


class Asset(BaseModel):
    id: str = Field(default_factory=new_id)
    address: str
    hostname: Optional[str] = None
    asset_type: AssetType = AssetType.UNKNOWN
    operating_system: str = UNKNOWN
    os_version: str = UNKNOWN
    mac_address: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    cpu_model: Optional[str] = None
    cpu_cores: Optional[str] = None
    ram_size: Optional[str] = None
    gpu_name: Optional[str] = None
    last_user: Optional[str] = None
    online: bool = False
    first_seen: float = Field(default_factory=time.time)
    last_seen: float = Field(default_factory=time.time)
    last_scan_id: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class ResourceSnapshot:
    thread_count: int
    batch_size: int
    cpu_load: Optional[float] = None
    memory_load: Optional[float] = None
    sampled_at: float = 0.0
