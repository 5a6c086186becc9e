"""Profile data behind the About and Work pages.

The profile is read from ``data/profile.yaml`` and the project list from
``data/projects.yaml``. Environment variables override individual profile
fields so one checkout can be deployed under different identities.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROFILE_ENV_OVERRIDES = {
    "FOLIO_USER_NAME": "name",
    "FOLIO_USER_TITLE": "title",
    "FOLIO_USER_DESCRIPTION": "description",
}

CONTACT_ENV_OVERRIDES = {
    "FOLIO_GITHUB_URL": "github",
    "FOLIO_LINKEDIN_URL": "linkedin",
    "FOLIO_TWITTER_URL": "twitter",
    "FOLIO_EMAIL": "email",
}


@dataclass
class Project:
    """One entry on the Work page."""

    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    github: str | None = None
    live: str | None = None


@dataclass
class Profile:
    """The site owner.

    Attributes:
        name: Display name.
        title: Job title.
        description: Short biography for the About page.
        contact: Link name -> URL (github, linkedin, twitter, email).
        projects: Entries for the Work page.
    """

    name: str = "Your Name"
    title: str = "Software Engineer"
    description: str = ""
    contact: dict[str, str] = field(default_factory=dict)
    projects: list[Project] = field(default_factory=list)

    @property
    def site_title(self) -> str:
        return f"{self.name} - {self.title}"

    @property
    def site_description(self) -> str:
        return f"Personal portfolio and blog of {self.name}, a passionate {self.title}"


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as exc:
        logger.warning("Ignoring malformed %s: %s", path, exc)
        return None


def _project_from(entry: Any) -> Project | None:
    if not isinstance(entry, dict) or not entry.get("title"):
        return None
    tags = entry.get("tags") or []
    return Project(
        title=str(entry["title"]),
        description=str(entry.get("description") or ""),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        github=entry.get("github") or None,
        live=entry.get("live") or None,
    )


def load_profile(data_dir: Path) -> Profile:
    """Load the profile and projects, applying environment overrides.

    Args:
        data_dir: Directory holding profile.yaml and projects.yaml.

    Returns:
        Profile with defaults for anything missing.
    """
    profile = Profile()
    raw = _read_yaml(data_dir / "profile.yaml")
    if isinstance(raw, dict):
        for key in ("name", "title", "description"):
            if isinstance(raw.get(key), str) and raw[key].strip():
                setattr(profile, key, raw[key].strip())
        contact = raw.get("contact")
        if isinstance(contact, dict):
            profile.contact = {str(k): str(v) for k, v in contact.items() if v}

    for env_name, key in PROFILE_ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            setattr(profile, key, value)
    for env_name, key in CONTACT_ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            profile.contact[key] = value

    entries = _read_yaml(data_dir / "projects.yaml")
    if isinstance(entries, dict):
        entries = entries.get("projects")
    if isinstance(entries, list):
        profile.projects = [p for p in map(_project_from, entries) if p is not None]
    return profile
