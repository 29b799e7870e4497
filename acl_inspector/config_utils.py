#!/usr/bin/env python3
"""
Shared configuration utilities for the OneDrive ACL inspector.

This module provides shared functions for:
- Loading inspector settings (INI file plus ACL_INSPECTOR_* environment overrides)
- Locating and reading rclone configuration
- Finding OneDrive remotes
- Turning an rclone token into a read-only fallback credential
"""

import configparser
import json
import logging
import os
import sys
from dataclasses import dataclass, fields
from typing import List, Mapping, Optional

from .credentials import Capability, Credential, parse_timestamp
from .oauth import DEFAULT_CLIENT_ID, DEFAULT_SCOPE, TOKEN_URL
from .phantom import DEFAULT_PHANTOM_TTL
from .token_store import DEFAULT_TOKEN_FILE

logger = logging.getLogger(__name__)

CONFIG_SECTION = "acl-inspector"
DEFAULT_CONFIG_PATH = "~/.config/acl-inspector/config.ini"
ENV_PREFIX = "ACL_INSPECTOR_"

ONEDRIVE_REMOTE_TYPES = ("onedrive", "onedrivebusiness", "sharepoint")


@dataclass
class Settings:
    remote: Optional[str] = None
    token_file: str = DEFAULT_TOKEN_FILE
    phantom_ttl: float = DEFAULT_PHANTOM_TTL
    max_workers: int = 4
    timeout: float = 30
    client_id: str = DEFAULT_CLIENT_ID
    client_secret: Optional[str] = None
    token_url: str = TOKEN_URL
    scope: str = DEFAULT_SCOPE


def load_settings(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load settings from an INI file and the environment.

    Args:
        config_path: INI file to read (default: ~/.config/acl-inspector/config.ini,
                     silently skipped when missing)
        environ: Environment mapping (default: os.environ)

    Returns:
        Settings with environment values taking precedence over the file

    Raises:
        ValueError: if a numeric setting cannot be parsed
    """
    environ = os.environ if environ is None else environ
    values = {}

    path = os.path.expanduser(config_path or DEFAULT_CONFIG_PATH)
    if os.path.exists(path):
        config = configparser.ConfigParser()
        config.read(path)
        if config.has_section(CONFIG_SECTION):
            values.update(config[CONFIG_SECTION])
    elif config_path:
        raise ValueError(f"Config file not found: {path}")

    for f in fields(Settings):
        env_value = environ.get(ENV_PREFIX + f.name.upper())
        if env_value is not None:
            values[f.name] = env_value

    settings = Settings()
    for f in fields(Settings):
        if f.name not in values:
            continue
        raw = values[f.name].strip()
        if f.name in ("phantom_ttl", "timeout"):
            setattr(settings, f.name, float(raw))
        elif f.name == "max_workers":
            setattr(settings, f.name, max(1, int(raw)))
        elif f.name in ("remote", "client_secret"):
            setattr(settings, f.name, raw or None)
        elif raw:
            setattr(settings, f.name, raw)
    return settings


def get_rclone_conf_path() -> str:
    """Return the platform-specific rclone.conf path."""
    if sys.platform.startswith("win") and os.environ.get("APPDATA"):
        return os.path.join(os.environ["APPDATA"], "rclone", "rclone.conf")
    return os.path.expanduser("~/.config/rclone/rclone.conf")


def _read_rclone_config(conf_path: Optional[str] = None) -> Optional[configparser.ConfigParser]:
    conf_path = conf_path or get_rclone_conf_path()
    if not os.path.exists(conf_path):
        return None

    # rclone values can contain '%', so no interpolation
    config = configparser.ConfigParser(interpolation=None)
    config.read(conf_path)
    return config


def find_onedrive_remotes(conf_path: Optional[str] = None) -> List[str]:
    """
    Find all OneDrive remotes in rclone configuration.

    Returns:
        List of OneDrive remote names, in file order
    """
    config = _read_rclone_config(conf_path)
    if config is None:
        return []

    onedrive_remotes = []
    for section_name in config.sections():
        remote_type = config[section_name].get("type", "").lower()
        if remote_type in ONEDRIVE_REMOTE_TYPES:
            onedrive_remotes.append(section_name)

    return onedrive_remotes


class RcloneCredentialSource:
    """
    Secondary, read-only credential taken from rclone.conf.

    rclone's token never records the granted scopes, so it is always treated
    as read-only. A refreshed rclone token is never written back: rclone owns
    that file.
    """

    def __init__(self, remote: Optional[str] = None, conf_path: Optional[str] = None):
        self.remote = remote
        self.conf_path = conf_path or get_rclone_conf_path()

    def resolve_remote(self) -> Optional[str]:
        if self.remote:
            return self.remote

        onedrive_remotes = find_onedrive_remotes(self.conf_path)
        if not onedrive_remotes:
            logger.warning("No OneDrive remotes found in %s", self.conf_path)
            return None
        if len(onedrive_remotes) > 1:
            logger.info("Found %d OneDrive remotes, using first: %s", len(onedrive_remotes), onedrive_remotes[0])
        return onedrive_remotes[0]

    @property
    def reconnect_hint(self) -> str:
        remote = self.remote or "<remote>"
        return f"Refresh your rclone token: rclone config reconnect {remote}:"

    def load(self) -> Optional[Credential]:
        """
        Read the remote's token.

        Returns:
            A READ_ONLY Credential, or None if rclone is not configured or the
            token cannot be read
        """
        config = _read_rclone_config(self.conf_path)
        if config is None:
            logger.debug("rclone config not found at %s", self.conf_path)
            return None

        remote = self.resolve_remote()
        if remote is None:
            return None
        self.remote = remote

        if remote not in config:
            logger.warning("Remote '%s' not found in %s (available: %s)", remote, self.conf_path, config.sections())
            return None

        token_json = config[remote].get("token")
        if not token_json:
            logger.warning("No token found for remote '%s' in %s", remote, self.conf_path)
            return None

        try:
            token = json.loads(token_json)
        except ValueError as e:
            logger.warning("Could not parse token JSON for remote '%s': %s", remote, e)
            return None

        access_token = (token.get("access_token") or "").strip().strip("\"'")
        if not access_token:
            logger.warning("No access_token in token JSON for remote '%s'", remote)
            return None

        expires_at = None
        expiry_str = token.get("expiry")
        if expiry_str:
            try:
                expires_at = parse_timestamp(expiry_str)
            except ValueError as e:
                # Continue anyway in case the expiry format is different
                logger.warning("Could not parse token expiry time '%s': %s", expiry_str, e)

        return Credential(
            access_token=access_token,
            refresh_token=token.get("refresh_token") or None,
            expires_at=expires_at,
            capability=Capability.READ_ONLY,
            source=f"rclone:{remote}",
        )
