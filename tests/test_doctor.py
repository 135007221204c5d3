from types import SimpleNamespace

import requests

from storysync.workflows.doctor import build_doctor_report, collect_environment_warnings, format_doctor_report
from storysync.workflows.sync_config import SyncConfig


def _checks(report):
    return {check["name"]: check for check in report["checks"]}


def test_doctor_reports_configuration(tmp_path):
    config = SyncConfig(api_bases=("https://a.example/wp/v2",), mirror_url=None, cache_dir=tmp_path / "cache")

    report = build_doctor_report(config=config)

    checks = _checks(report)
    assert report["ok"] is True
    assert checks["STORYSYNC_CACHE_DIR"]["status"] == "ok"
    assert checks["STORYSYNC_MIRROR_URL"]["status"] == "missing"
    assert checks["STORYSYNC_MIRROR_URL"]["level"] == "info"
    assert "storysync doctor" in format_doctor_report(report)


def test_doctor_probe_marks_unreachable_bases(tmp_path):
    bases = ("https://a.example/wp/v2", "https://b.example/wp/v2")
    config = SyncConfig(api_bases=bases, cache_dir=tmp_path)
    seen = []

    def fake_get(url, params=None, timeout=None):
        seen.append((url, dict(params)))
        if url.startswith("https://a."):
            raise requests.ConnectionError("refused")
        return SimpleNamespace(status_code=200)

    report = build_doctor_report(config=config, probe=True, http_get=fake_get)

    checks = _checks(report)
    assert checks["probe:https://a.example/wp/v2"]["status"] == "missing"
    assert checks["probe:https://b.example/wp/v2"]["status"] == "ok"
    assert checks["api_reachable"]["detail"] == "1/2 API base(s) reachable"
    assert seen[0] == ("https://a.example/wp/v2/posts", {"per_page": "1", "_fields": "id"})


def test_doctor_fails_when_no_base_is_reachable(tmp_path):
    config = SyncConfig(api_bases=("https://a.example/wp/v2",), cache_dir=tmp_path)

    report = build_doctor_report(
        config=config,
        probe=True,
        http_get=lambda *a, **k: SimpleNamespace(status_code=503),
    )

    assert report["ok"] is False


def test_environment_warnings_flag_bad_values(monkeypatch):
    monkeypatch.setenv("STORYSYNC_PAGE_TTL", "thirty minutes")
    monkeypatch.setenv("STORYSYNC_API_BASES", "ftp://old.example,https://ok.example")

    codes = {item["code"] for item in collect_environment_warnings()}

    assert "storysync_page_ttl_invalid" in codes
    assert "api_base_not_http" in codes
