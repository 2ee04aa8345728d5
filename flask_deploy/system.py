"""Boundary to the host being provisioned.

Every effectful action (packages, users, files, services) goes through a
``SystemController``. ``ShellController`` runs commands locally with invoke,
or over SSH with fabric when a host is given.
"""

import base64
from dataclasses import dataclass
from typing import Protocol

from fabric import Connection
from invoke import Context

from .ui import error

EXTERNAL_IP_URL = "https://ifconfig.me"


@dataclass
class CommandResult:
    exited: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exited == 0


def shell_quote(script: str) -> str:
    escaped = script.replace("'", "'\\''")
    return f"'{escaped}'"


class SystemController(Protocol):
    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        user: str | None = None,
        check: bool = True,
        interactive: bool = False,
    ) -> CommandResult:
        """Runs a shell snippet. ``check`` makes a non-zero exit fatal."""
        ...

    def read_file(self, path: str) -> str | None: ...

    def write_file(
        self, path: str, content: str, *, owner: str | None = None, mode: str | None = None
    ) -> None: ...

    def path_exists(self, path: str) -> bool: ...

    def is_superuser(self) -> bool: ...

    def has_passwordless_sudo(self) -> bool: ...

    def external_ip(self) -> str:
        """:return: public IP of the host, or "" when the lookup fails"""
        ...

    def ensure_packages(self, packages: list[str]) -> None: ...

    def user_exists(self, name: str) -> bool: ...

    def create_user(self, name: str) -> None: ...

    def supervisor_state(self, program: str) -> str:
        """:return: supervisor state column, e.g. ``RUNNING``, or ``UNKNOWN``"""
        ...

    def supervisor_control(self, *args: str, check: bool = True) -> CommandResult: ...

    def service_active(self, name: str) -> bool: ...

    def restart_service(self, name: str) -> None: ...

    def check_proxy_config(self) -> CommandResult: ...

    def reload_proxy(self) -> None: ...


class ShellController:
    def __init__(self, host: str | None = None):
        self.host = host
        if host:
            self.runner = Connection(host, connect_kwargs={"look_for_keys": True})
        else:
            self.runner = Context()

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        user: str | None = None,
        check: bool = True,
        interactive: bool = False,
    ) -> CommandResult:
        if user:
            cmd = f"sudo -u {user} -H bash -c {shell_quote(cmd)}"
        elif sudo:
            cmd = f"sudo bash -c {shell_quote(cmd)}"
        if interactive:
            result = self.runner.run(cmd, pty=True, warn=True)
        else:
            result = self.runner.run(cmd, hide=True, warn=True)
        out = CommandResult(result.exited, result.stdout, result.stderr)
        if check and not out.ok:
            error(f"Command failed: {cmd}\n{out.stderr.strip() or out.stdout.strip()}")
        return out

    def read_file(self, path: str) -> str | None:
        result = self.run(f"cat {path}", sudo=True, check=False)
        return result.stdout if result.ok else None

    def write_file(
        self, path: str, content: str, *, owner: str | None = None, mode: str | None = None
    ) -> None:
        """Uses base64 encoding to avoid heredoc and escaping issues."""
        encoded = base64.b64encode(content.encode()).decode()
        self.run(f"echo '{encoded}' | base64 -d > {path}", sudo=True)
        if owner:
            self.run(f"chown {owner}:{owner} {path}", sudo=True)
        if mode:
            self.run(f"chmod {mode} {path}", sudo=True)

    def path_exists(self, path: str) -> bool:
        return self.run(f"test -e {path}", sudo=True, check=False).ok

    def is_superuser(self) -> bool:
        return self.run("id -u", check=False).stdout.strip() == "0"

    def has_passwordless_sudo(self) -> bool:
        return self.run("sudo -n true", check=False).ok

    def external_ip(self) -> str:
        result = self.run(f"curl -s --max-time 5 {EXTERNAL_IP_URL}", check=False)
        return result.stdout.strip() if result.ok else ""

    def ensure_packages(self, packages: list[str]) -> None:
        self.run("apt-get update", sudo=True)
        self.run(
            f"DEBIAN_FRONTEND=noninteractive apt-get install -y {' '.join(packages)}",
            sudo=True,
        )

    def user_exists(self, name: str) -> bool:
        return self.run(f"id -u {name}", check=False).ok

    def create_user(self, name: str) -> None:
        self.run(f'adduser --disabled-password --gecos "" {name}', sudo=True)

    def supervisor_state(self, program: str) -> str:
        result = self.run(f"supervisorctl status {program}", sudo=True, check=False)
        parts = result.stdout.split()
        if len(parts) >= 2 and parts[0] == program:
            return parts[1]
        return "UNKNOWN"

    def supervisor_control(self, *args: str, check: bool = True) -> CommandResult:
        return self.run(f"supervisorctl {' '.join(args)}", sudo=True, check=check)

    def service_active(self, name: str) -> bool:
        return self.run(f"systemctl is-active --quiet {name}", check=False).ok

    def restart_service(self, name: str) -> None:
        self.run(f"systemctl restart {name}", sudo=True)

    def check_proxy_config(self) -> CommandResult:
        return self.run("nginx -t", sudo=True, check=False)

    def reload_proxy(self) -> None:
        self.run("systemctl reload nginx", sudo=True)


def open_system(host: str | None = None) -> SystemController:
    return ShellController(host)
