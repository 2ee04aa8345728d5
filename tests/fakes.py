"""In-memory stand-in for the host being provisioned."""

import shlex

from flask_deploy.record import DeploymentRecord
from flask_deploy.system import CommandResult

SERVER_IP = "203.0.113.10"

DEFAULT_SITE = """\
server {
\tlisten 80 default_server;
\tlisten [::]:80 default_server;

\troot /var/www/html;
\tindex index.html index.htm index.nginx-debian.html;

\tserver_name _;

\tlocation / {
\t\ttry_files $uri $uri/ =404;
\t}
}
"""


def make_record(**overrides) -> DeploymentRecord:
    values = dict(
        project_name="blog",
        project_user="bloguser",
        domain_name="example.com",
        git_repo="https://github.com/example/blog.git",
    )
    values.update(overrides)
    return DeploymentRecord(**values)


class FakeSystem:
    def __init__(self, external_ip=SERVER_IP, superuser=False, sudo=True):
        self.ip = external_ip
        self.superuser = superuser
        self.sudo = sudo
        self.files: dict[str, str] = {}
        self.dirs: set[str] = set()
        self.users: set[str] = set()
        self.packages: list[str] = []
        self.commands: list[str] = []
        self.interactive: list[str] = []
        # command prefix -> canned result
        self.responses: dict[str, CommandResult] = {}
        self.supervisor_states: dict[str, str] = {}
        self.start_state = "RUNNING"
        self.active_services: set[str] = {"nginx"}
        self.restarted: list[str] = []
        self.reloads = 0
        self.proxy_config_ok = True

    def ran(self, prefix: str) -> list[str]:
        return [cmd for cmd in self.commands if cmd.startswith(prefix)]

    def run(self, cmd, *, sudo=False, user=None, check=True, interactive=False):
        self.commands.append(cmd)
        if interactive:
            self.interactive.append(cmd)
        words = cmd.split()
        if words[:1] == ["cp"] and len(words) == 3:
            self.files[words[2]] = self.files.get(words[1], "")
        elif words[:2] == ["tar", "-czf"]:
            self.files[words[2]] = ""
        elif words[:1] == ["mv"]:
            src, dst = shlex.split(cmd)[1:3]
            self.dirs.discard(src)
            self.dirs.add(dst)

        result = CommandResult(0)
        for prefix in sorted(self.responses, key=len, reverse=True):
            if cmd.startswith(prefix):
                result = self.responses[prefix]
                break
        if check and not result.ok:
            raise SystemExit(1)
        return result

    def read_file(self, path):
        return self.files.get(path)

    def write_file(self, path, content, *, owner=None, mode=None):
        self.files[path] = content

    def path_exists(self, path):
        return path in self.files or path in self.dirs

    def is_superuser(self):
        return self.superuser

    def has_passwordless_sudo(self):
        return self.sudo

    def external_ip(self):
        return self.ip

    def ensure_packages(self, packages):
        self.packages.extend(packages)

    def user_exists(self, name):
        return name in self.users

    def create_user(self, name):
        self.users.add(name)
        self.dirs.add(f"/home/{name}")

    def supervisor_state(self, program):
        return self.supervisor_states.get(program, "UNKNOWN")

    def supervisor_control(self, *args, check=True):
        self.commands.append("supervisorctl " + " ".join(args))
        if args[0] in ("start", "restart"):
            self.supervisor_states[args[1]] = self.start_state
        return CommandResult(0)

    def service_active(self, name):
        return name in self.active_services

    def restart_service(self, name):
        self.restarted.append(name)

    def check_proxy_config(self):
        if self.proxy_config_ok:
            return CommandResult(0, stderr="nginx: configuration file /etc/nginx/nginx.conf test is successful")
        return CommandResult(1, stderr="nginx: [emerg] unexpected \"}\"")

    def reload_proxy(self):
        self.reloads += 1
