"""
Application configuration loaded from config.ini and the environment.

config.ini holds the site settings; environment variables override single
keys so the same deployment variables as the hosted version keep working
(BASE_URL, TODOIST_TOKEN, PROJECT_ID, SIGNING_SECRET, ADMIN_USER, ADMIN_PASS,
LOGO_PATH, PORT).

Example config.ini:
    [Server]
    BaseUrl = https://lager.example.com
    Port = 3000

    [Todoist]
    Token = 0123abcd...
    ProjectId = 2203306141

    [Security]
    SigningSecret = change-me

    [Auth]
    AdminUser = lager
    AdminPass = secret
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from exceptions import ConfigurationError
from logger import get_logger

logger = get_logger(__name__)

CONFIG_ENV_VAR = "PALLET_LABELS_CONFIG"
DEFAULT_CONFIG_PATH = "config.ini"
DEFAULT_DATA_DIR = Path(os.path.expanduser("~")) / ".pallet_labels"

# Environment variable -> (section, option)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "BASE_URL": ("Server", "BaseUrl"),
    "PORT": ("Server", "Port"),
    "TODOIST_TOKEN": ("Todoist", "Token"),
    "PROJECT_ID": ("Todoist", "ProjectId"),
    "SIGNING_SECRET": ("Security", "SigningSecret"),
    "ADMIN_USER": ("Auth", "AdminUser"),
    "ADMIN_PASS": ("Auth", "AdminPass"),
    "LOGO_PATH": ("Labels", "LogoPath"),
    "COMPLETION_LOG_PATH": ("Storage", "CompletionLogPath"),
}

REQUIRED_SETTINGS = {
    "base_url": "BASE_URL",
    "todoist_token": "TODOIST_TOKEN",
    "project_id": "PROJECT_ID",
    "signing_secret": "SIGNING_SECRET",
    "admin_user": "ADMIN_USER",
    "admin_pass": "ADMIN_PASS",
}


@dataclass(frozen=True)
class AppConfig:
    """Resolved settings for one server process."""

    base_url: str = ""
    host: str = "0.0.0.0"
    port: int = 3000
    time_zone: str = "Europe/Berlin"
    legacy_redirect: bool = True

    todoist_token: str = ""
    project_id: str = ""
    api_base_url: str = "https://api.todoist.com/rest/v2"
    request_timeout: float = 10.0

    signing_secret: str = ""

    admin_user: str = ""
    admin_pass: str = ""
    auth_realm: str = "LagerApp"
    public_paths: Tuple[str, ...] = ("/health", "/scan", "/complete")

    storage_backend: str = "json"
    completion_log_path: Path = field(default=DEFAULT_DATA_DIR / "ausbuch-log.json")

    logo_path: Optional[Path] = None
    max_pallets: int = 50

    @property
    def public_base_url(self) -> str:
        """Base URL without trailing slash, as printed into QR codes."""
        return self.base_url.rstrip("/")

    def validate(self) -> "AppConfig":
        """
        Check that every required setting is present.

        Raises:
            ConfigurationError: Listing all missing settings at once
        """
        missing = [env for attr, env in REQUIRED_SETTINGS.items() if not getattr(self, attr)]
        if missing:
            raise ConfigurationError(
                "Bitte Konfiguration vollständig ausfüllen: " + ", ".join(missing),
                missing=missing,
            )
        if self.storage_backend not in ("json", "sqlite"):
            raise ConfigurationError(f"Unknown storage backend: {self.storage_backend}")
        return self

    @classmethod
    def load(cls, config_path: Optional[str] = None,
             environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Build the configuration from config.ini plus environment overrides.

        Args:
            config_path: Path to config.ini; defaults to $PALLET_LABELS_CONFIG
                         or ./config.ini
            environ: Environment mapping (os.environ when omitted)
        """
        environ = os.environ if environ is None else environ
        path = config_path or environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
        parser = _load_config(path)

        for env_name, (section, option) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value is None or not value.strip():
                continue
            if not parser.has_section(section):
                parser.add_section(section)
            parser.set(section, option, value.strip())

        return cls.from_parser(parser)

    @classmethod
    def from_parser(cls, config: configparser.ConfigParser) -> "AppConfig":
        public_paths = config.get('Auth', 'PublicPaths', fallback="/health,/scan,/complete")
        logo_path = config.get('Labels', 'LogoPath', fallback="").strip()
        log_path = config.get('Storage', 'CompletionLogPath', fallback="").strip()
        backend = config.get('Storage', 'Backend', fallback="json").strip().lower()

        if not log_path:
            default_name = "ausbuch-log.db" if backend == "sqlite" else "ausbuch-log.json"
            log_path = str(DEFAULT_DATA_DIR / default_name)

        return cls(
            base_url=config.get('Server', 'BaseUrl', fallback="").strip(),
            host=config.get('Server', 'Host', fallback="0.0.0.0"),
            port=config.getint('Server', 'Port', fallback=3000),
            time_zone=config.get('Server', 'TimeZone', fallback="Europe/Berlin"),
            legacy_redirect=config.getboolean('Server', 'LegacyRedirect', fallback=True),
            todoist_token=config.get('Todoist', 'Token', fallback="").strip(),
            project_id=config.get('Todoist', 'ProjectId', fallback="").strip(),
            api_base_url=config.get('Todoist', 'ApiBaseUrl',
                                    fallback="https://api.todoist.com/rest/v2").rstrip("/"),
            request_timeout=config.getfloat('Todoist', 'Timeout', fallback=10.0),
            signing_secret=config.get('Security', 'SigningSecret', fallback=""),
            admin_user=config.get('Auth', 'AdminUser', fallback=""),
            admin_pass=config.get('Auth', 'AdminPass', fallback=""),
            auth_realm=config.get('Auth', 'Realm', fallback="LagerApp"),
            public_paths=tuple(p.strip() for p in public_paths.split(",") if p.strip()),
            storage_backend=backend,
            completion_log_path=Path(log_path),
            logo_path=Path(logo_path) if logo_path else None,
            max_pallets=config.getint('Labels', 'MaxPallets', fallback=50),
        )


def _load_config(config_path: str) -> configparser.ConfigParser:
    """Load configuration from config.ini; a missing file yields defaults."""
    # Secrets may contain '%', so no interpolation
    config = configparser.ConfigParser(interpolation=None)

    if not Path(config_path).exists():
        logger.warning(f"Config file not found: {config_path}, using defaults and environment")
        return config

    try:
        config.read(config_path, encoding='utf-8')
        logger.info(f"Configuration loaded from {config_path}")
    except configparser.Error as e:
        raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

    return config
