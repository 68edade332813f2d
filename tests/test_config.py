import json

import pytest

from tenantreport.config.loader import (
    ReportConfigError, get_activity_config, get_auth_methods_config, get_batch_config, get_http_config
)


def _write(tmp_path, data):
    p = tmp_path / "appsettings.json"
    p.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return p


def test_defaults_without_file():
    assert get_http_config() == {"timeout_seconds": 30, "max_retries": 4, "max_concurrency": 6}
    assert get_batch_config() == {"chunk_size": 20, "max_item_retries": 2}
    assert get_auth_methods_config() == {"include_device_details": False}
    assert get_activity_config()["days"] == 30


def test_malformed_file_falls_back_to_defaults(tmp_path):
    p = _write(tmp_path, "{not json")
    assert get_batch_config(p)["chunk_size"] == 20


def test_env_variable_points_at_settings(tmp_path, monkeypatch):
    p = _write(tmp_path, {"activity": {"days": 90, "include_realtime": True}})
    monkeypatch.setenv("TENANTREPORT_SETTINGS", str(p))
    cfg = get_activity_config()
    assert cfg["days"] == 90 and cfg["include_realtime"] is True


@pytest.mark.parametrize("batch", [{"chunk_size": 0}, {"chunk_size": 21}, {"chunk_size": "lots"}, {"max_item_retries": -1}])
def test_invalid_batch_settings_raise(tmp_path, batch):
    p = _write(tmp_path, {"batch": batch})
    with pytest.raises(ReportConfigError):
        get_batch_config(p)
