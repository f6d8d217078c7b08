"""Preflight checks for the news anchor video service.

Catches missing tools and credentials before the API boots:
  python scripts/preflight.py

Add ``--check-http`` to also ping the provider hosts.
"""

from __future__ import annotations

import argparse
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Union
from urllib.parse import urlparse

import httpx

from newsanchor import SERVER_DIR, load_environment


LOCAL_AVATAR_FILES = ("male.jpg", "female.jpg")
LEVELS = ("PASS", "WARN", "FAIL")

Number = Union[int, float]


@dataclass
class Report:
    entries: list[tuple[str, str]] = field(default_factory=list)

    def add(self, level: str, message: str) -> None:
        self.entries.append((level, message))

    def count(self, level: str) -> int:
        return sum(1 for entry_level, _ in self.entries if entry_level == level)

    @property
    def exit_code(self) -> int:
        return 1 if self.count("FAIL") else 0


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _looks_like_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _numeric_env(
    report: Report,
    name: str,
    default: Number,
    *,
    cast: Callable[[str], Number] = float,
    minimum: Number = 0,
) -> Number:
    """Read a numeric knob; bad or out-of-range values are reported as failures."""
    raw = _env(name, str(default))
    try:
        value = cast(raw)
    except ValueError:
        report.add("FAIL", f"{name}={raw!r} is not a valid {cast.__name__}.")
        return default
    if value < minimum:
        report.add("FAIL", f"{name}={value} is below the minimum of {minimum}.")
    return value


def _redact(secret: str) -> str:
    if len(secret) < 8:
        return "***"
    return f"{secret[:4]}...{secret[-4:]}"


def check_media_tools(report: Report) -> None:
    """The image-avatar pipeline shells out to ffmpeg and ffprobe."""
    ffmpeg = _env("FFMPEG_BINARY", "ffmpeg")
    for env_name, binary in (("FFMPEG_BINARY", ffmpeg), ("FFPROBE_BINARY", _env("FFPROBE_BINARY", "ffprobe"))):
        if shutil.which(binary) is None:
            report.add("FAIL", f"{binary} not found on PATH (set {env_name} or install ffmpeg).")
        else:
            report.add("PASS", f"{binary} found.")


def check_image_pipeline(report: Report) -> bool:
    """Validate credentials needed by speech synthesis and storage uploads."""
    configured = True
    credentials = _env("GOOGLE_APPLICATION_CREDENTIALS")
    if not credentials:
        report.add("WARN", "GOOGLE_APPLICATION_CREDENTIALS not set; relying on ambient Google credentials.")
    elif not Path(credentials).expanduser().is_file():
        report.add("FAIL", f"GOOGLE_APPLICATION_CREDENTIALS points to a missing file: {credentials}")
        configured = False
    else:
        report.add("PASS", "Google credentials file found.")

    supabase_url = _env("SUPABASE_URL")
    supabase_key = _env("SUPABASE_SERVICE_ROLE_KEY")
    if not (supabase_url and supabase_key):
        report.add("FAIL", "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for media uploads.")
        configured = False
    elif not _looks_like_url(supabase_url):
        report.add("FAIL", f"SUPABASE_URL is not an http(s) URL: {supabase_url!r}")
        configured = False
    else:
        bucket = _env("SUPABASE_STORAGE_BUCKET", "anchor-media")
        report.add("PASS", f"Supabase configured ({_redact(supabase_key)}), bucket {bucket!r}.")

    avatar_dir = Path(_env("AVATAR_DIR", str(SERVER_DIR / "avatars"))).expanduser()
    missing = [name for name in LOCAL_AVATAR_FILES if not (avatar_dir / name).is_file()]
    if missing:
        report.add("WARN", f"Avatar images missing from {avatar_dir}: {', '.join(missing)}")
    else:
        report.add("PASS", f"Avatar images present in {avatar_dir}.")
    return configured


def check_lipsync(report: Report) -> None:
    """Lip-sync is optional; without it every image video uses the fallback animation."""
    sync_key = _env("SYNC_API_KEY")
    if sync_key:
        report.add("PASS", f"SYNC_API_KEY detected ({_redact(sync_key)}).")
    else:
        report.add("WARN", "SYNC_API_KEY not set; image videos will always use the fallback animation.")

    interval = _numeric_env(report, "SYNC_POLL_INTERVAL_SECONDS", 10.0, minimum=1.0)
    attempts = _numeric_env(report, "SYNC_MAX_POLL_ATTEMPTS", 30, cast=int, minimum=1)
    budget = interval * attempts
    level = "WARN" if budget < 60 else "PASS"
    report.add(level, f"Lip-sync poll budget is ~{budget:.0f}s ({attempts} polls every {interval:g}s).")


def check_avatar_provider(report: Report) -> bool:
    """Validate HeyGen settings for provider-hosted avatars."""
    heygen_key = _env("HEYGEN_API_KEY")
    if not heygen_key:
        report.add("WARN", "HEYGEN_API_KEY not set; provider avatars are disabled.")
        return False
    report.add("PASS", f"HEYGEN_API_KEY detected ({_redact(heygen_key)}).")

    for name in ("HEYGEN_MALE_VOICE_ID", "HEYGEN_FEMALE_VOICE_ID"):
        if not _env(name):
            report.add("WARN", f"{name} not set; requests using that selector will be rejected.")

    base = _numeric_env(report, "HEYGEN_BASE_DELAY_SECONDS", 5.0, minimum=0.1)
    cap = _numeric_env(report, "HEYGEN_MAX_DELAY_SECONDS", 60.0, minimum=0.1)
    if cap < base:
        report.add("FAIL", "HEYGEN_MAX_DELAY_SECONDS must be >= HEYGEN_BASE_DELAY_SECONDS.")
    _numeric_env(report, "HEYGEN_MAX_JITTER_SECONDS", 5.0)
    _numeric_env(report, "HEYGEN_INITIAL_DELAY_SECONDS", 10.0)
    _numeric_env(report, "HEYGEN_MAX_POLL_ATTEMPTS", 30, cast=int, minimum=1)
    _numeric_env(report, "HEYGEN_MAX_TEXT_CHARS", 1500, cast=int, minimum=50)
    return True


def check_http_health(report: Report, *, timeout_seconds: float) -> None:
    """Confirm each configured provider host answers without a server error."""
    targets = {
        "SYNC_API_BASE": _env("SYNC_API_BASE", "https://api.sync.so/v2"),
        "HEYGEN_API_BASE": _env("HEYGEN_API_BASE", "https://api.heygen.com"),
        "SUPABASE_URL": _env("SUPABASE_URL"),
    }
    with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
        for name, url in targets.items():
            if not url:
                continue
            try:
                status = client.get(url).status_code
            except httpx.HTTPError as exc:
                report.add("FAIL", f"{name}: {url} unreachable ({exc}).")
                continue
            level = "FAIL" if status >= 500 else "PASS"
            report.add(level, f"{name}: {url} answered HTTP {status}.")


def print_report(report: Report) -> None:
    for level in LEVELS:
        for entry_level, message in report.entries:
            if entry_level == level:
                print(f"[{level}] {message}")
    totals = ", ".join(f"{report.count(level)} {level.lower()}" for level in LEVELS)
    print(f"\n{totals}")


def parse_args(argv: Union[list[str], None] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="News anchor service preflight checks")
    parser.add_argument("--check-http", action="store_true", help="Also ping the provider hosts.")
    parser.add_argument("--http-timeout", type=float, default=3.0, help="Seconds per HTTP probe (default: 3).")
    return parser.parse_args(argv)


def main(argv: Union[list[str], None] = None) -> int:
    args = parse_args(argv)
    loaded = load_environment()
    report = Report()
    report.add("PASS", f"Env files loaded: {', '.join(str(path) for path in loaded) or 'none'}.")

    check_media_tools(report)
    image_ready = check_image_pipeline(report)
    check_lipsync(report)
    provider_ready = check_avatar_provider(report)
    if not (image_ready or provider_ready):
        report.add("FAIL", "Neither image avatars nor provider avatars are usable.")
    if args.check_http:
        check_http_health(report, timeout_seconds=max(args.http_timeout, 0.1))

    print_report(report)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
