import pytest

from ts_kernel.config import KernelConfig
from ts_kernel.errors import TSError, ts_error, TS_E_BAD_REQUEST


_ENV = ("TS_STALE_AGENT_MS", "TS_CANON_MAX_DEPTH", "TS_WRITE_TOLERANCE_MS", "TS_LOG_LEVEL")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = KernelConfig.from_env()
    assert cfg == KernelConfig()
    assert cfg.stale_agent_ms == 60000
    assert cfg.canon_max_depth == 128
    assert cfg.write_tolerance_ms == 2000
    assert cfg.log_level == "WARNING"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TS_STALE_AGENT_MS", "5000")
    monkeypatch.setenv("TS_CANON_MAX_DEPTH", "32")
    monkeypatch.setenv("TS_WRITE_TOLERANCE_MS", "0")
    monkeypatch.setenv("TS_LOG_LEVEL", "debug")
    cfg = KernelConfig.from_env()
    assert cfg.stale_agent_ms == 5000
    assert cfg.canon_max_depth == 32
    assert cfg.write_tolerance_ms == 0
    assert cfg.log_level == "DEBUG"


@pytest.mark.parametrize("raw,expected", [("0", 1), ("-5", 1), ("9999", 512), ("abc", 128)])
def test_depth_is_clamped(monkeypatch, raw, expected):
    monkeypatch.setenv("TS_CANON_MAX_DEPTH", raw)
    assert KernelConfig.from_env().canon_max_depth == expected


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("TS_STALE_AGENT_MS", "-1")
    monkeypatch.setenv("TS_WRITE_TOLERANCE_MS", "soon")
    monkeypatch.setenv("TS_LOG_LEVEL", "chatty")
    cfg = KernelConfig.from_env()
    assert cfg.stale_agent_ms == 60000
    assert cfg.write_tolerance_ms == 2000
    assert cfg.log_level == "WARNING"


def test_error_shape():
    err = ts_error(TS_E_BAD_REQUEST, "bad input", got="x")
    assert isinstance(err, TSError)
    assert str(err) == "TS_E_BAD_REQUEST: bad input"
    assert err.as_dict() == {
        "code": TS_E_BAD_REQUEST,
        "message": "bad input",
        "retryable": False,
        "details": {"got": "x"},
    }
    assert "details" not in ts_error(TS_E_BAD_REQUEST, "m").as_dict()
