import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from tracegraph.base.config import (
    LayoutConfig,
    LogConfig,
    ParserConfig,
    TraceGraphConfig,
    get_config,
    set_config,
    setup_logging,
)
from tracegraph.errors import (
    DecodeFailure,
    ErrorCode,
    LayoutUnavailable,
    MalformedTraceError,
    TraceGraphError,
    handle_error,
)
from tracegraph.layout.base import LayoutStrategy


@pytest.fixture(autouse=True)
def _restore_global_config():
    original = get_config()
    yield
    set_config(original)


def test_config_defaults():
    config = TraceGraphConfig()
    assert config.parser == ParserConfig()
    assert config.parser.decode_payloads is True
    assert config.layout.viewport_width == 1200.0
    assert config.layout.viewport_height == 800.0
    assert config.layout.margin_top == 180.0
    assert config.layout.flow_iterations == 6
    assert config.log.level == "INFO"
    assert config.log.file_path is None
    assert config.default_strategy == "hierarchical"


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TRACEGRAPH_MAX_DOCUMENT_BYTES", "2048")
    monkeypatch.setenv("TRACEGRAPH_DECODE_PAYLOADS", "false")
    monkeypatch.setenv("TRACEGRAPH_VIEWPORT_WIDTH", "1600")
    monkeypatch.setenv("TRACEGRAPH_FLOW_ITERATIONS", "12")
    monkeypatch.setenv("TRACEGRAPH_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("TRACEGRAPH_LOG_FILE", str(tmp_path / "trace.log"))
    monkeypatch.setenv("TRACEGRAPH_LAYOUT", "FLOW")

    config = TraceGraphConfig.from_env()
    assert config.parser.max_document_bytes == 2048
    assert config.parser.decode_payloads is False
    assert config.layout.viewport_width == 1600.0
    assert config.layout.viewport_height == 800.0
    assert config.layout.flow_iterations == 12
    assert config.log.level == "WARNING"
    assert config.log.file_path == tmp_path / "trace.log"
    assert config.default_strategy == "flow"


def test_config_from_env_rejects_bad_numbers(monkeypatch):
    monkeypatch.setenv("TRACEGRAPH_VIEWPORT_WIDTH", "wide")
    with pytest.raises(TraceGraphError) as excinfo:
        TraceGraphConfig.from_env()
    assert excinfo.value.code is ErrorCode.CONFIG_INVALID


def test_set_config_replaces_and_resets(monkeypatch):
    custom = TraceGraphConfig(layout=LayoutConfig(viewport_width=640.0))
    set_config(custom)
    assert get_config() is custom

    monkeypatch.setenv("TRACEGRAPH_VIEWPORT_WIDTH", "900")
    set_config(None)
    assert get_config().layout.viewport_width == 900.0


def test_setup_logging_with_file(monkeypatch, tmp_path):
    log_file = tmp_path / "logs" / "tracegraph.log"
    config = TraceGraphConfig(log=LogConfig(level="DEBUG", file_path=log_file))

    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    setup_logging(config)

    handlers = captured["handlers"]
    try:
        assert captured["level"] == logging.DEBUG
        assert captured["force"] is True
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)
        assert log_file.exists()
    finally:
        for handler in handlers:
            handler.close()


def test_strategy_from_name():
    assert LayoutStrategy.from_name(" Hierarchical ") is LayoutStrategy.HIERARCHICAL
    with pytest.raises(TraceGraphError) as excinfo:
        LayoutStrategy.from_name("radial")
    assert excinfo.value.details["allowed"] == ["hierarchical", "flow"]


def test_error_codes_on_subclasses():
    assert MalformedTraceError("x").code is ErrorCode.TRACE_MALFORMED
    assert DecodeFailure("x").code is ErrorCode.TRACE_DECODE_FAILED
    assert LayoutUnavailable("x").code is ErrorCode.LAYOUT_UNAVAILABLE
    assert str(MalformedTraceError("No request element found in XML")) == (
        "[TRACE_001] No request element found in XML"
    )


def test_error_round_trip():
    error = MalformedTraceError("No events element found in XML", details={"missing": "events"})
    data = error.to_dict()
    assert data == {
        "code": "TRACE_001",
        "message": "No events element found in XML",
        "details": {"missing": "events"},
    }
    assert json.loads(error.to_json()) == data

    restored = TraceGraphError.from_dict(data)
    assert restored.code is ErrorCode.TRACE_MALFORMED
    assert restored.details == {"missing": "events"}


def test_handle_error_wraps_unknown_exceptions():
    wrapped = handle_error(KeyError("x"), context="while building graph")
    assert wrapped.code is ErrorCode.SYSTEM_INTERNAL_ERROR
    assert wrapped.message.startswith("while building graph: ")
    assert wrapped.details["original_type"] == "KeyError"

    original = LayoutUnavailable("cycle")
    assert handle_error(original) is original
