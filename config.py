"""
Configuration for Lockbox.

A Config is resolved once at the start of a command (Config.from_env) and
passed explicitly to everything that needs it.
"""

import os
import re
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field, replace

from errors import InvalidPath

logger = logging.getLogger(__name__)

# Application version - update this for each release
VERSION = "0.4.0"

APP_NAME = "lockbox"
DEFAULT_PROFILE = "default"
DEFAULT_REPO = "lockbox-storage"
DEFAULT_CLIENT_ID = "Iv23liLb0xK3yStoRe01"

_PROFILE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_profile_name(name: str) -> str:
    """Profile names share the charset of key names."""
    if not name or not _PROFILE_PATTERN.match(name):
        raise InvalidPath(
            f"Invalid profile name '{name}'. Use letters, digits, '-' and '_' only."
        )
    return name


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    # Local storage root (profiles + active profile marker)
    home: Path = field(default_factory=lambda: Path.home() / f".{APP_NAME}")
    profile: str = DEFAULT_PROFILE

    # GitHub settings
    api_url: str = "https://api.github.com"
    oauth_url: str = "https://github.com"
    client_id: str = DEFAULT_CLIENT_ID
    app_name: str = APP_NAME
    default_repo: str = DEFAULT_REPO

    # Bypasses the stored token (CI, tests)
    token_override: Optional[str] = None

    # HTTP timeout in seconds
    timeout: float = 30.0

    @classmethod
    def from_env(cls, profile: Optional[str] = None) -> "Config":
        """Resolve configuration from the environment.

        The profile is taken from the explicit argument, then LOCKBOX_PROFILE,
        then the active profile file, then 'default'.
        """
        home = Path(os.environ.get("LOCKBOX_CONFIG_DIR", Path.home() / f".{APP_NAME}"))
        profile = (
            profile
            or os.environ.get("LOCKBOX_PROFILE")
            or read_active_profile(home)
            or DEFAULT_PROFILE
        )
        config = cls(
            home=home,
            profile=validate_profile_name(profile),
            api_url=os.environ.get("LOCKBOX_API_URL", "https://api.github.com").rstrip("/"),
            oauth_url=os.environ.get("LOCKBOX_OAUTH_URL", "https://github.com").rstrip("/"),
            client_id=os.environ.get("GITHUB_CLIENT_ID", DEFAULT_CLIENT_ID),
            app_name=os.environ.get("GITHUB_APP_NAME", APP_NAME),
            token_override=os.environ.get("LOCKBOX_TOKEN") or None,
            timeout=float(os.environ.get("LOCKBOX_TIMEOUT", "30")),
        )
        logger.debug("Resolved config: home=%s profile=%s api=%s", config.home, config.profile, config.api_url)
        return config

    def with_profile(self, profile: str) -> "Config":
        """Return a copy of this config bound to another profile."""
        return replace(self, profile=validate_profile_name(profile))

    @property
    def profiles_dir(self) -> Path:
        """Directory holding one sub-directory per profile."""
        return self.home / "profiles"

    @property
    def profile_dir(self) -> Path:
        """Directory for the current profile's encrypted files."""
        return self.profiles_dir / self.profile

    @property
    def token_path(self) -> Path:
        """Path to the encrypted GitHub token."""
        return self.profile_dir / "github_token.json"

    @property
    def lmk_path(self) -> Path:
        """Path to the encrypted local master key."""
        return self.profile_dir / "local_master_key.json"

    @property
    def settings_path(self) -> Path:
        """Path to the profile settings (encrypted under the local master key)."""
        return self.profile_dir / "config.json"

    @property
    def active_profile_path(self) -> Path:
        """Unencrypted marker recording the active profile."""
        return self.home / "active_profile"

    @property
    def remote_dir(self) -> str:
        """App directory in the remote repository."""
        return f".{APP_NAME}"


def read_active_profile(home: Path) -> Optional[str]:
    """Read the active profile marker, if any."""
    path = home / "active_profile"
    if not path.exists():
        return None
    name = path.read_text().strip()
    return name or None


def set_active_profile(config: Config, profile: str) -> None:
    """Record profile as the active one."""
    validate_profile_name(profile)
    config.home.mkdir(parents=True, exist_ok=True)
    config.active_profile_path.write_text(profile + "\n")
    logger.info("Active profile set to %s", profile)


def list_profiles(config: Config) -> list[str]:
    """Names of all profiles that have a local directory."""
    if not config.profiles_dir.exists():
        return []
    return sorted(p.name for p in config.profiles_dir.iterdir() if p.is_dir())
