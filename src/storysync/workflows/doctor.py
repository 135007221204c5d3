from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

from .http_client import build_params
from .sync_config import POSTS_PATH, PROBE_FIELDS, SyncConfig, load_config

HttpGet = Callable[..., Any]

_NUMERIC_ENV = (
    "STORYSYNC_TIMEOUT",
    "STORYSYNC_PROBE_TIMEOUT",
    "STORYSYNC_PAGE_TTL",
    "STORYSYNC_CONVERTED_TTL",
    "STORYSYNC_AVAILABILITY_TTL",
    "STORYSYNC_SNAPSHOT_MAX",
)


def _check_writable(path: Path) -> bool:
    try:
        probe = path
        while not probe.exists():
            if probe.parent == probe:
                return False
            probe = probe.parent
        return os.access(probe, os.W_OK)
    except OSError:
        return False


def collect_environment_warnings() -> List[Dict[str, str]]:
    warnings: List[Dict[str, str]] = []
    for name in _NUMERIC_ENV:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            continue
        try:
            float(raw)
        except ValueError:
            warnings.append(
                {
                    "code": f"{name.lower()}_invalid",
                    "message": f"{name}={raw!r} is not a number; the default is used.",
                    "remedy": f"Unset {name} or give it a numeric value.",
                }
            )
    for base in (os.getenv("STORYSYNC_API_BASES") or "").split(","):
        base = base.strip()
        if base and not base.startswith(("http://", "https://")):
            warnings.append(
                {
                    "code": "api_base_not_http",
                    "message": f"API base {base!r} is not an http(s) URL.",
                    "remedy": "Use absolute URLs in STORYSYNC_API_BASES.",
                }
            )
    return warnings


def _probe_base(base: str, timeout: float, http_get: HttpGet) -> Optional[str]:
    """Return None when the base answers 2xx, else an error description."""

    try:
        resp = http_get(
            f"{base}/{POSTS_PATH}",
            params=build_params({"per_page": 1, "_fields": PROBE_FIELDS}),
            timeout=timeout,
        )
    except requests.RequestException as exc:
        return f"{type(exc).__name__}: {exc}"
    if 200 <= resp.status_code < 300:
        return None
    return f"status {resp.status_code}"


def build_doctor_report(
    *,
    config: Optional[SyncConfig] = None,
    probe: bool = False,
    http_get: Optional[HttpGet] = None,
) -> Dict[str, Any]:
    config = config or load_config()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = value
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    add_check(
        "STORYSYNC_API_BASES",
        bool(config.api_bases),
        detail=f"{len(config.api_bases)} API base(s) configured",
        remedy="Set STORYSYNC_API_URL or STORYSYNC_API_BASES.",
        value=", ".join(config.api_bases),
    )

    add_check(
        "STORYSYNC_MIRROR_URL",
        bool(config.mirror_url),
        detail="Mirror fallback enabled" if config.mirror_url else "Mirror fallback disabled",
        remedy="Set STORYSYNC_MIRROR_URL to the origin server's posts endpoint.",
        level="info",
        value=config.mirror_url,
    )

    if config.disable_cache:
        add_check("STORYSYNC_CACHE_DISABLE", True, detail="Page and converted caches disabled", level="info")
    writable = _check_writable(config.cache_dir)
    add_check(
        "STORYSYNC_CACHE_DIR",
        writable,
        detail=str(config.cache_dir),
        remedy="Create the cache directory or set STORYSYNC_CACHE_DIR to a writable location.",
    )

    if probe:
        getter = http_get or requests.get
        reachable = 0
        for base in config.api_bases:
            error = _probe_base(base, config.probe_timeout, getter)
            if error is None:
                reachable += 1
            add_check(f"probe:{base}", error is None, detail=error or "reachable", level="info")
        add_check(
            "api_reachable",
            reachable > 0,
            detail=f"{reachable}/{len(config.api_bases)} API base(s) reachable",
            remedy="Check network access; cached and mirror content will be served meanwhile.",
        )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("storysync doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        label = f"{check.get('name', 'check')}: {check.get('status', 'unknown')}"
        value = check.get("value")
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{check.get('level', 'info')}] {label}")
        detail = check.get("detail")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy:
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            lines.append(f"- {warning.get('code', 'warning')}: {warning.get('message', '')}")
            remedy = warning.get("remedy")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "collect_environment_warnings", "format_doctor_report"]
