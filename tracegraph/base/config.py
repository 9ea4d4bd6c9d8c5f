# ============================================================================
# tracegraph/base/config.py
# Pipeline Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines the tunables of the trace graph pipeline: parser limits, layout
# geometry and logging. Everything has a default so the pipeline runs with
# zero configuration; a host can override values through TRACEGRAPH_*
# environment variables or by injecting a config object.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: immutable settings objects, safe to share across threads
# 2. Environment Variables: e.g. TRACEGRAPH_LOG_LEVEL=DEBUG
# 3. Singleton: one process-wide config, replaceable in tests via set_config()
#
# ============================================================================

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from tracegraph.errors import ErrorCode, TraceGraphError

logger = logging.getLogger(__name__)


# ============================================================================
# Parser Configuration
# ============================================================================

@dataclass(frozen=True)
class ParserConfig:
    # Reject documents larger than this before handing them to the XML parser
    max_document_bytes: int = 50 * 1024 * 1024

    # Base64-decode object/return/arg bodies (False keeps the raw text)
    decode_payloads: bool = True


# ============================================================================
# Layout Configuration
# ============================================================================
# Geometry shared by both layout strategies. Values are in abstract canvas
# units; a renderer may pan/zoom uniformly.

@dataclass(frozen=True)
class LayoutConfig:
    # Default viewport used when the caller does not pass one
    viewport_width: float = 1200.0
    viewport_height: float = 800.0

    # Canvas margins (top is generous to leave room for the request header)
    margin_top: float = 180.0
    margin_right: float = 50.0
    margin_bottom: float = 50.0
    margin_left: float = 50.0

    # Hierarchical layout spacing
    vertical_spacing: float = 100.0
    horizontal_spacing: float = 120.0
    vertical_step: float = 80.0

    # Node footprint used for edge anchoring; collapsed groups draw larger
    node_radius: float = 18.0
    group_radius_scale: float = 1.5

    # Corrective pass: a child closer than this to its parent is pushed down
    parent_clearance: float = 50.0
    parent_push: float = 80.0

    # Violations sharing a predecessor depth within this tolerance form one row group
    violation_group_tolerance: float = 10.0

    # Flow layout
    flow_node_width: float = 30.0
    flow_link_value: float = 10.0
    flow_extent_scale: float = 1.5
    flow_extent_inset: float = 100.0
    flow_iterations: int = 6

    def flow_padding(self, node_count: int) -> float:
        """Vertical padding between flow nodes; smaller graphs get more air."""
        if node_count > 20:
            return 40.0
        if node_count > 10:
            return 60.0
        return 80.0


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    # DEBUG shows every dropped reference and edge decision
    level: str = "INFO"

    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    # File logging is off by default; the core performs no I/O of its own
    file_path: Optional[Path] = None
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass(frozen=True)
class TraceGraphConfig:
    parser: ParserConfig = field(default_factory=ParserConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    log: LogConfig = field(default_factory=LogConfig)

    # Default layout strategy name for hosts that do not choose one per call
    default_strategy: str = "hierarchical"

    @classmethod
    def from_env(cls) -> "TraceGraphConfig":
        """
        Build a TraceGraphConfig from TRACEGRAPH_* environment variables.

        Raises:
            TraceGraphError: CONFIG_INVALID when a numeric variable does not parse
        """
        try:
            parser = ParserConfig(
                max_document_bytes=int(os.getenv("TRACEGRAPH_MAX_DOCUMENT_BYTES", str(50 * 1024 * 1024))),
                decode_payloads=os.getenv("TRACEGRAPH_DECODE_PAYLOADS", "true").lower() == "true",
            )
            layout = LayoutConfig(
                viewport_width=float(os.getenv("TRACEGRAPH_VIEWPORT_WIDTH", "1200")),
                viewport_height=float(os.getenv("TRACEGRAPH_VIEWPORT_HEIGHT", "800")),
                flow_iterations=int(os.getenv("TRACEGRAPH_FLOW_ITERATIONS", "6")),
            )
        except ValueError as e:
            raise TraceGraphError(
                ErrorCode.CONFIG_INVALID,
                f"Invalid numeric configuration value: {e}",
            ) from e

        log_file = os.getenv("TRACEGRAPH_LOG_FILE")
        log = LogConfig(
            level=os.getenv("TRACEGRAPH_LOG_LEVEL", "INFO"),
            file_path=Path(log_file) if log_file else None,
        )

        return cls(
            parser=parser,
            layout=layout,
            log=log,
            default_strategy=os.getenv("TRACEGRAPH_LAYOUT", "hierarchical").lower(),
        )


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[TraceGraphConfig] = None


def get_config() -> TraceGraphConfig:
    """
    Get the global configuration instance.

    Only creates the config once (from the environment), then reuses it.
    """
    global _config
    if _config is None:
        _config = TraceGraphConfig.from_env()
    return _config


def set_config(config: Optional[TraceGraphConfig]) -> None:
    """
    Replace the global configuration (mainly used for testing).

    Passing None forces the next get_config() to re-read the environment.
    """
    global _config
    _config = config


def setup_logging(config: Optional[TraceGraphConfig] = None) -> None:
    """
    Configure Python's logging system based on our settings.

    Hosts call this once at startup; the library itself never does.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_path is not None:
        from logging.handlers import RotatingFileHandler
        cfg.log.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            cfg.log.file_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper(), logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
