"""Render a git repository into a static, browsable HTML site."""

from .errors import (
    CorruptObject,
    CorruptRepository,
    GraphCycleDetected,
    OutputWriteFailure,
    RendergitError,
    RepositoryNotFound,
)
from .repository import Repository, RepositoryMetadata
from .site import SiteConfig, SiteResult, generate

__version__ = "0.1.0"

__all__ = [
    "CorruptObject",
    "CorruptRepository",
    "GraphCycleDetected",
    "OutputWriteFailure",
    "RendergitError",
    "Repository",
    "RepositoryMetadata",
    "RepositoryNotFound",
    "SiteConfig",
    "SiteResult",
    "generate",
]
