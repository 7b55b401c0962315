"""
Pydantic models for the File Ingest Agent.

Shared data models across the application.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


# =====================================================
# Configuration Models
# =====================================================

class Rule(BaseModel):
    """Filename pattern routed to a destination folder."""
    pattern: str
    destination: Path


class UploadRoute(BaseModel):
    """Folder whose new files are dispatched to a named plugin."""
    name: str
    folder: Path
    plugin: str


class WatchTarget(BaseModel):
    """Folder observed by one directory watcher."""
    folder: Path
    recursive: bool = True
    filename_filter: Optional[str] = None  # glob, e.g. "*.info"

    model_config = {"frozen": True}


# =====================================================
# Plugin Models
# =====================================================

class PluginDescriptor(BaseModel):
    """Registered processing module."""
    name: str
    version: Optional[str] = None
    path: Path

    def __str__(self) -> str:
        return f"{self.name} (v{self.version})" if self.version else self.name


class PluginRegistration(BaseModel):
    """Request body for registering a module file."""
    path: Path


class PluginList(BaseModel):
    """List of registered plugins."""
    plugins: List[PluginDescriptor]
    total: int


# =====================================================
# Status Models
# =====================================================

class PipelineStatus(BaseModel):
    """Runtime state of a single watch pipeline."""
    name: str
    folder: Path
    watching: bool
    tracked_files: int = 0


class AgentStatus(BaseModel):
    """Runtime state of the whole agent."""
    running: bool
    pipelines: List[PipelineStatus] = Field(default_factory=list)
    queue_depth: int = 0
    plugins: int = 0
    debug_mode: bool = False


class OperationResponse(BaseModel):
    """Generic operation response."""
    status: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
