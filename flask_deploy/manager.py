"""Management menu for one deployment.

The menu is a closed table of numbered commands dispatched in a loop until
the exit command is chosen. Handlers report through the terminal and never
abort the loop.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from rich import print

from .checks import (
    check_http_status,
    classify_cert_expiry,
    classify_status,
    days_until,
    is_responding,
    is_valid_ip,
    parse_disk_usage,
    parse_free_memory,
    parse_openssl_enddate,
    timed_http_status,
    usage_color,
)
from .record import DeploymentRecord
from .system import SystemController, open_system
from .ui import ask, confirm, error, header, log, pause, show, warn

EXIT = "0"
STATUS_LOG_LINES = 5
LOG_LINES = 50
DIAGNOSTIC_LOG_LINES = 100
NGINX_ERROR_LOG = "/var/log/nginx/error.log"

CERT_COLORS = {"normal": "green", "warning": "yellow", "critical": "red"}
STATUS_COLORS = {"ok": "green", "redirect": "yellow"}


@dataclass
class MenuItem:
    label: str
    handler: Callable[[], object]


def colored(flag: bool, on: str, off: str) -> str:
    return f"[green]{on}[/green]" if flag else f"[red]{off}[/red]"


class Manager:
    def __init__(self, record: DeploymentRecord, system: SystemController):
        self.record = record
        self.system = system
        self.commands: dict[str, MenuItem] = {
            "1": MenuItem("Show project status", self.show_status),
            "2": MenuItem("Restart service", self.restart_service),
            "3": MenuItem("View logs", self.view_logs),
            "4": MenuItem("Update project from Git", self.update_project),
            "5": MenuItem("SSL certificate management", self.manage_ssl),
            "6": MenuItem("Firewall management", self.manage_firewall),
            "7": MenuItem("Create backup", self.backup_project),
            "8": MenuItem("Quick health check", self.health_check),
            "9": MenuItem("Test URLs", self.url_test),
            "10": MenuItem("Project information", self.project_info),
            "11": MenuItem("Advanced diagnostics", self.diagnostics),
        }

    # -- dispatch

    def dispatch(self, choice: str) -> bool:
        """:return: False when the exit command was chosen"""
        choice = choice.strip()
        if choice == EXIT:
            return False
        item = self.commands.get(choice)
        if item is None:
            warn("Invalid choice. Please try again.")
            return True
        try:
            item.handler()
        except Exception as e:
            warn(f"{item.label} failed: {e}")
        return True

    def print_menu(self):
        header(f"Flask Project Management - {self.record.project_name}")
        print("Choose an option:")
        print()
        for key, item in self.commands.items():
            print(f"{key + ')':<4} {item.label}")
        print(f"{EXIT + ')':<4} Exit")
        print()

    def run(self):
        while True:
            self.print_menu()
            if not self.dispatch(ask("Enter your choice")):
                print("Goodbye!")
                return
            pause()

    def submenu(self, title: str, items: list[MenuItem]):
        header(title)
        for i, item in enumerate(items, 1):
            print(f"{i}) {item.label}")
        back = str(len(items) + 1)
        print(f"{back}) Back to main menu")
        print()
        choice = ask(f"Enter choice [1-{back}]")
        if choice == back:
            return
        if not choice.isdigit() or not 1 <= int(choice) <= len(items):
            warn("Invalid choice")
            return
        items[int(choice) - 1].handler()

    # -- helpers

    def sudo(self, cmd: str, **kwargs):
        return self.system.run(cmd, sudo=True, check=False, **kwargs)

    def show_output(self, cmd: str, missing: str | None = None):
        result = self.sudo(cmd)
        if result.ok:
            show(result.stdout)
        else:
            warn(missing or (result.stderr.strip() or f"Command failed: {cmd}"))

    def tail(self, path: str, lines: int = LOG_LINES):
        self.show_output(f"tail -n {lines} {path}", missing=f"{path} not found")

    def service_running(self) -> bool:
        return self.system.supervisor_state(self.record.project_name) == "RUNNING"

    def proxy_error_log(self) -> str:
        if self.system.path_exists(self.record.error_log):
            return self.record.error_log
        return NGINX_ERROR_LOG

    def certificate_days(self) -> int | None:
        cert = f"/etc/letsencrypt/live/{self.record.domain_name}/cert.pem"
        result = self.sudo(f"openssl x509 -enddate -noout -in {cert}")
        if not result.ok:
            return None
        expiry = parse_openssl_enddate(result.stdout)
        return days_until(expiry) if expiry else None

    # -- status

    def show_resources(self):
        memory = parse_free_memory(self.system.run("free -m", check=False).stdout)
        if memory:
            used, total = memory
            percent = used * 100 / total if total else 0
            print(f"Memory: [{usage_color(percent)}]{used}/{total} MB ({percent:.0f}%)[/]")
        disk = parse_disk_usage(self.system.run("df -P /", check=False).stdout)
        if disk is not None:
            print(f"Disk (/): [{usage_color(disk)}]{disk}% used[/]")
        load = self.system.run("cat /proc/loadavg", check=False).stdout.split()
        if len(load) >= 3:
            print(f"Load average: {' '.join(load[:3])}")

    def show_certificate(self) -> str | None:
        """:return: expiry band, or None when no certificate was found"""
        days = self.certificate_days()
        if days is None:
            print("SSL Certificate: [yellow]not found[/yellow]")
            return None
        band = classify_cert_expiry(days)
        print(f"SSL Certificate: [{CERT_COLORS[band]}]expires in {days} days ({band})[/]")
        return band

    def show_status(self):
        record = self.record
        header(f"Project Status - {record.project_name}")
        print(f"Service Status: {colored(self.service_running(), 'RUNNING', 'STOPPED')}")
        print(f"Nginx Status: {colored(self.system.service_active('nginx'), 'RUNNING', 'STOPPED')}")
        print()
        self.show_resources()

        print()
        print("[blue]Access URLs:[/blue]")
        for url in record.access_urls():
            print(f"  {url}")

        if record.use_tls:
            print()
            self.show_certificate()

        print()
        print(f"[blue]Recent Logs (last {STATUS_LOG_LINES} lines):[/blue]")
        self.tail(record.app_log, STATUS_LOG_LINES)

    def restart_service(self) -> bool:
        name = self.record.project_name
        log(f"Restarting {name} service...")
        self.system.supervisor_control("restart", name, check=False)
        if self.service_running():
            log("Service restarted successfully")
            return True
        warn("Service restart failed. Check logs for details.")
        return False

    # -- logs

    def follow_app_log(self):
        print("Press Ctrl+C to stop real-time monitoring")
        try:
            self.sudo(f"tail -f {self.record.app_log}", interactive=True)
        except KeyboardInterrupt:
            pass

    def view_logs(self):
        record = self.record
        self.submenu(
            "Choose log type to view",
            [
                MenuItem("Application logs", lambda: self.tail(record.app_log)),
                MenuItem("Nginx access logs", lambda: self.tail(record.access_log)),
                MenuItem("Nginx error logs", lambda: self.tail(self.proxy_error_log())),
                MenuItem("Real-time application logs", self.follow_app_log),
            ],
        )

    # -- update

    def update_project(self) -> bool:
        record = self.record
        log("Updating project from Git repository...")
        result = self.system.run(
            record.update_script, user=record.project_user, check=False, interactive=True
        )
        if not result.ok:
            warn("Update failed. Check the output above for details.")
            return False
        log("Code updated successfully!")
        if confirm("Restart service to apply changes?", default=True):
            self.restart_service()
        return True

    # -- ssl

    def install_certificate(self):
        log("Installing/Renewing SSL certificate...")
        result = self.sudo(f"certbot --nginx -d {self.record.domain_name}", interactive=True)
        if result.ok:
            log("SSL certificate updated successfully")
        else:
            warn("SSL certificate installation failed")

    def certificate_status(self):
        self.show_output("certbot certificates")
        self.show_certificate()

    def manage_ssl(self):
        self.submenu(
            "SSL Certificate Management",
            [
                MenuItem("Install/Renew SSL certificate", self.install_certificate),
                MenuItem("Check certificate status", self.certificate_status),
                MenuItem(
                    "Test certificate renewal",
                    lambda: self.sudo("certbot renew --dry-run", interactive=True),
                ),
            ],
        )

    # -- firewall

    def fail2ban_status(self):
        self.show_output("fail2ban-client status")
        print()
        self.show_output(
            f"fail2ban-client status {self.record.jail_name}",
            missing="No bans for this project",
        )

    def unban_ip(self):
        ip = ask("Enter IP address to unban")
        if not ip:
            return
        if not is_valid_ip(ip):
            warn(f"Invalid IP address: {ip}")
            return
        result = self.sudo(f"fail2ban-client set {self.record.jail_name} unbanip {ip}")
        if result.ok:
            log(f"{ip} unbanned")
        else:
            warn("IP not found or already unbanned")

    def manage_firewall(self):
        self.submenu(
            "Firewall Management",
            [
                MenuItem("Check firewall status", lambda: self.show_output("ufw status verbose")),
                MenuItem("Check Fail2Ban status", self.fail2ban_status),
                MenuItem("Unban IP address", self.unban_ip),
            ],
        )

    # -- backup

    def backup_project(self) -> str | None:
        record = self.record
        log("Creating project backup...")
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = f"/tmp/{record.project_name}_backup_{stamp}.tar.gz"
        result = self.sudo(f"tar -czf {path} -C /home/{record.project_user} {record.project_name}")
        if not result.ok or not self.system.path_exists(path):
            warn("Backup creation failed")
            return None
        log(f"Backup created: {path}")
        size = self.sudo(f"du -h {path}").stdout.split()
        if size:
            print(f"Backup size: {size[0]}")
        return path

    # -- checks

    def health_check(self) -> tuple[bool, bool]:
        """:return: (service running, application responding)"""
        header("Quick Health Check")
        running = self.service_running()
        print(f"Service is {colored(running, 'running', 'not running')}")
        status_code, _ = check_http_status(self.record.base_url("http"))
        responding = is_responding(status_code)
        print(f"Application is {colored(responding, 'responding', 'not responding')}")
        return running, responding

    def url_test(self) -> list[tuple[str, int | None, str]]:
        """:return: (url, status code, verdict) per access URL"""
        header("URL Test")
        results = []
        for url in self.record.access_urls():
            status_code, line, elapsed = timed_http_status(url)
            verdict = classify_status(status_code)
            color = STATUS_COLORS.get(verdict, "red")
            print(f"{url}")
            print(f"  [{color}]{verdict}[/]: {line} ({elapsed * 1000:.0f} ms)")
            results.append((url, status_code, verdict))
        return results

    # -- info

    def git_info(self, args: str) -> str:
        result = self.system.run(
            f'git -C "{self.record.project_dir}" {args}',
            user=self.record.project_user,
            check=False,
        )
        return result.stdout.strip() if result.ok else "unknown"

    def project_info(self):
        record = self.record
        header("Project Information")
        print(f"Project Name: {record.project_name}")
        print(f"Project User: {record.project_user}")
        print(f"Project Directory: {record.project_dir}")
        print(f"Domain: {record.domain_name}")
        print(f"App Module: {record.app_module}")
        print(f"Deployment Type: {record.deployment_type}")
        if record.deployment_type == "port":
            print(f"Port: {record.proxy_port}")
        print(f"SSL: {record.use_tls}")
        print(f"Security: {record.use_security}")
        print()
        print("[blue]Git:[/blue]")
        print(f"  Repository: {record.git_repo}")
        print(f"  Branch: {self.git_info('rev-parse --abbrev-ref HEAD')}")
        last_commit = self.git_info("log -1 --format='%h %s (%cr)'")
        print(f"  Last commit: {last_commit}")

    # -- diagnostics

    def test_proxy_config(self):
        result = self.system.check_proxy_config()
        show(result.stdout + result.stderr)
        if result.ok:
            log("Nginx configuration is valid")
        else:
            warn("Nginx configuration test failed")

    def check_socket(self) -> bool:
        socket = self.record.socket_path
        if not self.system.path_exists(socket):
            warn(f"Socket file not found: {socket}. Is the service running?")
            return False
        self.show_output(f"ls -la {socket}")
        return True

    def restart_everything(self):
        self.restart_service()
        services = ["nginx"]
        if self.record.use_security:
            services.append("fail2ban")
        for service in services:
            if self.sudo(f"systemctl restart {service}").ok:
                log(f"{service} restarted")
            else:
                warn(f"{service} restart failed")

    def diagnostics(self):
        record = self.record
        self.submenu(
            "Advanced Diagnostics",
            [
                MenuItem(
                    f"Application log (last {DIAGNOSTIC_LOG_LINES} lines)",
                    lambda: self.tail(record.app_log, DIAGNOSTIC_LOG_LINES),
                ),
                MenuItem("Nginx error log", lambda: self.tail(self.proxy_error_log())),
                MenuItem("Test nginx configuration", self.test_proxy_config),
                MenuItem("Check socket file", self.check_socket),
                MenuItem("Listening ports", lambda: self.show_output("ss -tlnp")),
                MenuItem(
                    "Running processes",
                    lambda: self.show_output("ps aux | grep -E 'gunicorn|nginx|supervisord' | grep -v grep"),
                ),
                MenuItem(
                    "Disk usage",
                    lambda: self.show_output(f'df -h / && du -sh "{record.project_dir}"'),
                ),
                MenuItem("Restart everything", self.restart_everything),
            ],
        )


def main(record: DeploymentRecord, host: str | None = None):
    system = open_system(host)
    if system.is_superuser():
        error("Please run this script as a regular user with sudo privileges, not as root.")
    try:
        Manager(record, system).run()
    except KeyboardInterrupt:
        print()
        print("Goodbye!")
