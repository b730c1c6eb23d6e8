"""BlogFlow configuration — environment settings and the brand profile.

Environment variables
---------------------
LLM_PROVIDER        Completion provider (default: ``"anthropic"``).
LLM_MAX_RETRIES     Attempts per completion call (default: 3).
LLM_INITIAL_WAIT    First backoff wait in seconds (default: 1).
LLM_MAX_WAIT        Backoff ceiling in seconds (default: 30).
LLM_MIN_INTERVAL    Minimum seconds between consecutive calls (default: 1).
BLOGFLOW_STORE      Snapshot store URL (default: ``"blogflow_runs"`` directory).
BLOGFLOW_BRAND      Path to a brand profile YAML file.
BLOGFLOW_LOG_LEVEL  ``debug`` | ``info`` | ``warning`` | ``error``.

``.env`` in the working directory (or the closest parent) is loaded on import.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from blogflow.logging import get_logger

_log = get_logger("config")

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name) or default)


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name) or default)


@dataclass
class Settings:
    """Runtime settings resolved from the environment."""

    provider: str = "anthropic"
    max_retries: int = 3
    initial_wait: float = 1.0
    max_wait: float = 30.0
    min_interval: float = 1.0
    store_url: str = "blogflow_runs"
    brand_path: str | None = None
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            provider=os.environ.get("LLM_PROVIDER", "anthropic"),
            max_retries=_env_int("LLM_MAX_RETRIES", 3),
            initial_wait=_env_float("LLM_INITIAL_WAIT", 1.0),
            max_wait=_env_float("LLM_MAX_WAIT", 30.0),
            min_interval=_env_float("LLM_MIN_INTERVAL", 1.0),
            store_url=os.environ.get("BLOGFLOW_STORE", "blogflow_runs"),
            brand_path=os.environ.get("BLOGFLOW_BRAND") or None,
            log_level=os.environ.get("BLOGFLOW_LOG_LEVEL", "info"),
        )


# ── Brand profile ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BrandProfile:
    """Who the blog is written for and how it should sound.

    Passed to every step handler's constructor; prompts embed
    :meth:`render` as shared framing.

    Examples
    --------
    >>> brand = BrandProfile.from_yaml("examples/brand.yaml")
    >>> print(brand.render())
    """

    name: str = "Independent Publisher"
    tagline: str = ""
    description: str = "An independent blog publishing practical, well-researched articles."
    mission: str = ""
    voice: tuple[str, ...] = ("clear", "practical", "friendly")
    audiences: tuple[str, ...] = ("curious general readers",)
    themes: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BrandProfile":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            _log.warning("Ignoring unknown brand profile keys: %s", sorted(unknown))
        kwargs: dict[str, Any] = {}
        for key in known & set(data):
            value = data[key]
            if key in ("voice", "audiences", "themes"):
                if isinstance(value, str):
                    value = [value]
                value = tuple(str(v) for v in value or ())
            else:
                value = str(value or "")
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "BrandProfile":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Brand profile {path} must be a YAML mapping")
        _log.debug("Brand profile loaded  path=%s  name=%s", path, data.get("name"))
        return cls.from_dict(data)

    def render(self) -> str:
        lines = [f"BRAND: {self.name}"]
        if self.tagline:
            lines.append(f"TAGLINE: {self.tagline}")
        lines.append(f"ABOUT: {self.description}")
        if self.mission:
            lines.append(f"MISSION: {self.mission}")
        if self.voice:
            lines.append(f"VOICE: {', '.join(self.voice)}")
        if self.audiences:
            lines.append(f"AUDIENCES: {', '.join(self.audiences)}")
        if self.themes:
            lines.append(f"KEY THEMES: {', '.join(self.themes)}")
        return "\n".join(lines)


def load_brand(path: str | Path | None = None) -> BrandProfile:
    """Brand profile from *path*, ``$BLOGFLOW_BRAND``, or the neutral default."""
    path = path or os.environ.get("BLOGFLOW_BRAND")
    if path:
        return BrandProfile.from_yaml(path)
    return BrandProfile()
