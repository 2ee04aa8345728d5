"""Deployment record and the flat key/value file that persists it."""

import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal

from .ui import warn

DeploymentType = Literal["main", "subdirectory", "port"]
DEPLOYMENT_TYPES: tuple[str, ...] = ("main", "subdirectory", "port")

CONFIG_FILENAME = "flask_deploy_config.conf"
SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# Keys written by the shell version of this tool
LEGACY_KEYS = {
    "FLASK_APP_FILE": "APP_ENTRY_FILE",
    "FLASK_APP_VAR": "APP_ENTRY_VAR",
    "USE_SSL": "USE_TLS",
    "SETUP_SECURITY": "USE_SECURITY",
    "NGINX_PORT": "PROXY_PORT",
}

LINE_RE = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)="(.*)"$')


class ConfigWriteError(Exception):
    pass


def is_safe_name(value: str) -> bool:
    """Usable as a unix account, supervisor program and file name."""
    return bool(SAFE_NAME.match(value))


@dataclass(frozen=True)
class DeploymentRecord:
    project_name: str
    project_user: str
    domain_name: str
    git_repo: str
    app_entry_file: str = "app.py"
    app_entry_var: str = "app"
    use_tls: bool = True
    use_security: bool = True
    deployment_type: DeploymentType = "main"
    proxy_port: int | None = None

    def __post_init__(self):
        for name in (
            "project_name",
            "project_user",
            "domain_name",
            "git_repo",
            "app_entry_file",
            "app_entry_var",
        ):
            if not getattr(self, name):
                raise ValueError(f"{name} is required")
        for name in ("project_name", "project_user"):
            if not is_safe_name(getattr(self, name)):
                raise ValueError(f"{name} must be a plain identifier: {getattr(self, name)!r}")
        if self.deployment_type not in DEPLOYMENT_TYPES:
            raise ValueError(f"Unknown deployment type: {self.deployment_type}")
        if self.deployment_type == "port":
            if self.proxy_port is None:
                raise ValueError("proxy_port is required for port deployments")
            if not 1 <= self.proxy_port <= 65535:
                raise ValueError(f"proxy_port out of range: {self.proxy_port}")
        elif self.proxy_port is not None:
            raise ValueError("proxy_port is only valid for port deployments")

    @property
    def project_dir(self) -> str:
        return f"/home/{self.project_user}/{self.project_name}"

    @property
    def app_module(self) -> str:
        """``app.py`` + ``app`` -> ``app:app``"""
        stem = self.app_entry_file.rsplit(".", 1)[0]
        return f"{stem}:{self.app_entry_var}"

    @property
    def socket_path(self) -> str:
        return f"{self.project_dir}/run/{self.project_name}.sock"

    @property
    def start_script(self) -> str:
        return f"{self.project_dir}/gunicorn_start.sh"

    @property
    def update_script(self) -> str:
        return f"{self.project_dir}/update.sh"

    @property
    def supervisor_conf(self) -> str:
        return f"/etc/supervisor/conf.d/{self.project_name}.conf"

    @property
    def nginx_site(self) -> str:
        return f"/etc/nginx/sites-available/{self.project_name}"

    @property
    def nginx_site_enabled(self) -> str:
        return f"/etc/nginx/sites-enabled/{self.project_name}"

    @property
    def app_log(self) -> str:
        return f"/var/log/{self.project_name}.log"

    @property
    def access_log(self) -> str:
        return f"/var/log/nginx/{self.project_name}_access.log"

    @property
    def error_log(self) -> str:
        return f"/var/log/nginx/{self.project_name}_error.log"

    @property
    def jail_name(self) -> str:
        return f"nginx-{self.project_name}"

    def base_url(self, scheme: str = "http") -> str:
        if self.deployment_type == "subdirectory":
            return f"{scheme}://{self.domain_name}/{self.project_name}/"
        if self.deployment_type == "port":
            return f"{scheme}://{self.domain_name}:{self.proxy_port}/"
        return f"{scheme}://{self.domain_name}/"

    def access_urls(self) -> list[str]:
        urls = [self.base_url("http")]
        if self.use_tls:
            urls.append(self.base_url("https"))
        return urls


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "y")


def record_to_values(record: DeploymentRecord) -> dict[str, str]:
    values = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif value is None:
            value = ""
        values[f.name.upper()] = str(value)
    return values


def record_from_values(values: dict[str, str]) -> DeploymentRecord | None:
    """:return: record, or None when a required key is missing or invalid"""
    values = dict(values)
    for old, new in LEGACY_KEYS.items():
        if old in values and new not in values:
            values[new] = values.pop(old)

    required = [
        "PROJECT_NAME",
        "PROJECT_USER",
        "DOMAIN_NAME",
        "GIT_REPO",
        "APP_ENTRY_FILE",
        "APP_ENTRY_VAR",
        "USE_TLS",
        "USE_SECURITY",
        "DEPLOYMENT_TYPE",
    ]
    if any(not values.get(key) for key in required):
        return None

    deployment_type = values["DEPLOYMENT_TYPE"]
    proxy_port = None
    if deployment_type == "port":
        try:
            proxy_port = int(values.get("PROXY_PORT", ""))
        except ValueError:
            warn(f"Stored configuration is invalid: PROXY_PORT={values.get('PROXY_PORT', '')!r}")
            return None

    try:
        return DeploymentRecord(
            project_name=values["PROJECT_NAME"],
            project_user=values["PROJECT_USER"],
            domain_name=values["DOMAIN_NAME"],
            git_repo=values["GIT_REPO"],
            app_entry_file=values["APP_ENTRY_FILE"],
            app_entry_var=values["APP_ENTRY_VAR"],
            use_tls=_to_bool(values["USE_TLS"]),
            use_security=_to_bool(values["USE_SECURITY"]),
            deployment_type=deployment_type,
            proxy_port=proxy_port,
        )
    except ValueError as e:
        warn(f"Stored configuration is invalid: {e}")
        return None


class ConfigStore:
    def __init__(self, path: str | Path = CONFIG_FILENAME):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def manager_script(self, record: DeploymentRecord) -> Path:
        return self.path.parent / f"manage_{record.project_name}.py"

    def load(self) -> DeploymentRecord | None:
        """Unknown keys are ignored. Malformed or incomplete files count as absent."""
        if not self.exists():
            return None
        values = {}
        for lineno, line in enumerate(self.path.read_text().splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            match = LINE_RE.match(line)
            if not match:
                warn(f"{self.path}:{lineno}: not a KEY=\"value\" line, ignoring stored configuration")
                return None
            values[match.group(1)] = match.group(2)
        return record_from_values(values)

    def save(self, record: DeploymentRecord):
        lines = ["# Flask Deployment Configuration"]
        for key, value in record_to_values(record).items():
            lines.append(f'{key}="{value}"')
            if key == "PROJECT_USER":
                lines.append(f'PROJECT_DIR="{record.project_dir}"')
        try:
            self.path.write_text("\n".join(lines) + "\n")
        except OSError as e:
            raise ConfigWriteError(f"Cannot write {self.path}: {e}") from e
