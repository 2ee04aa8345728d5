"""Provisioning steps, run in order by ``deploy``."""

from datetime import datetime
from pathlib import Path
from textwrap import dedent

from rich import print

from .blocks import find_block, inject_location_block, upsert_block
from .checks import check_http_status, is_responding, is_valid_ip, resolve_dns_a
from .record import ConfigStore, DeploymentRecord
from .system import SystemController
from .templates import (
    generate_fail2ban_filter,
    generate_fail2ban_jail,
    generate_gunicorn_start,
    generate_manager_script,
    generate_nginx_site,
    generate_subdirectory_locations,
    generate_supervisor_config,
    generate_update_script,
)
from .ui import confirm, error, header, log, warn

NGINX_DEFAULT_SITE = "/etc/nginx/sites-available/default"
NGINX_DEFAULT_ENABLED = "/etc/nginx/sites-enabled/default"
FAIL2BAN_JAIL_CONF = "/etc/fail2ban/jail.conf"
FAIL2BAN_JAIL_LOCAL = "/etc/fail2ban/jail.local"

BASE_PACKAGES = ["python3", "python3-pip", "python3-venv", "git", "nginx", "supervisor", "ufw", "curl"]
TLS_PACKAGES = ["certbot", "python3-certbot-nginx", "openssl"]
SECURITY_PACKAGES = ["fail2ban"]


def timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def check_prerequisites(system: SystemController):
    if system.is_superuser():
        error("This script should not be run as root. Run it as a regular user with sudo privileges")
    if not system.has_passwordless_sudo():
        error("This script requires sudo privileges. Please run: sudo -v")


def system_packages(record: DeploymentRecord) -> list[str]:
    packages = list(BASE_PACKAGES)
    if record.use_tls:
        packages += TLS_PACKAGES
    if record.use_security:
        packages += SECURITY_PACKAGES
    return packages


def install_dependencies(record: DeploymentRecord, system: SystemController):
    header("Installing System Dependencies")
    system.ensure_packages(system_packages(record))
    log("System dependencies installed successfully")


def create_project_user(record: DeploymentRecord, system: SystemController):
    header("Creating Project User")
    user = record.project_user
    if system.user_exists(user):
        warn(f"User {user} already exists")
    else:
        system.create_user(user)
        log(f"User {user} created successfully")
    system.run(f"usermod -aG sudo {user}", sudo=True)
    # nginx workers need to traverse the home directory to reach the socket and static files
    system.run(f"chmod o+x /home/{user}", sudo=True)


def setup_project(record: DeploymentRecord, system: SystemController):
    header("Setting Up Flask Project")
    user = record.project_user
    project_dir = record.project_dir

    if system.path_exists(project_dir):
        backup = f"{project_dir}_backup_{timestamp()}"
        warn(f"Project directory already exists, moving it to {backup}")
        system.run(f'mv "{project_dir}" "{backup}"', user=user)

    system.run(f'git clone "{record.git_repo}" "{project_dir}"', user=user)

    venv_script = dedent(f"""
        set -e
        cd "{project_dir}"
        python3 -m venv venv
        venv/bin/pip install --upgrade pip
        if [ -f requirements.txt ]; then
            venv/bin/pip install -r requirements.txt
        else
            echo "No requirements.txt found, installing basic Flask packages"
            venv/bin/pip install flask gunicorn
        fi
        venv/bin/pip install gunicorn
    """).strip()
    system.run(venv_script, user=user)
    log("Project setup completed")


def create_gunicorn_script(record: DeploymentRecord, system: SystemController):
    header("Creating Gunicorn Configuration")
    system.write_file(
        record.start_script,
        generate_gunicorn_start(record),
        owner=record.project_user,
        mode="755",
    )
    system.run(f'mkdir -p "{record.project_dir}/run"', user=record.project_user)
    log("Gunicorn script created")


def setup_supervisor(record: DeploymentRecord, system: SystemController) -> bool:
    """:return: True if the program reached RUNNING"""
    header("Setting Up Supervisor")
    name = record.project_name
    system.write_file(record.supervisor_conf, generate_supervisor_config(record))
    system.supervisor_control("reread")
    system.supervisor_control("update")

    # A program left running by a previous deployment still points at the old checkout
    if system.supervisor_state(name) == "RUNNING":
        system.supervisor_control("restart", name, check=False)
    else:
        system.supervisor_control("start", name, check=False)

    state = system.supervisor_state(name)
    if state == "RUNNING":
        log("Supervisor configured and service started")
        return True
    warn(f"Service {name} is {state}. Check {record.app_log}")
    return False


def default_site_active(system: SystemController) -> bool:
    return system.path_exists(NGINX_DEFAULT_SITE) and system.path_exists(NGINX_DEFAULT_ENABLED)


def extend_default_site(record: DeploymentRecord, system: SystemController) -> bool:
    """Adds the project's locations to the default host as a managed block.

    :return: False when the default site has no server block to extend
    """
    text = system.read_file(NGINX_DEFAULT_SITE) or ""
    backup = f"{NGINX_DEFAULT_SITE}.backup.{timestamp()}"
    system.run(f"cp {NGINX_DEFAULT_SITE} {backup}", sudo=True)
    log(f"Default site backed up to {backup}")

    if find_block(text, record.project_name) is None and f"location /{record.project_name}/ {{" in text:
        log(f"Location /{record.project_name}/ already present in default site")
        return True

    try:
        new_text, changed = inject_location_block(
            text, record.project_name, generate_subdirectory_locations(record)
        )
    except ValueError:
        warn("Default site has no server block, creating a standalone site instead")
        return False

    if changed:
        warn("Adding subdirectory configuration to existing default site")
        system.write_file(NGINX_DEFAULT_SITE, new_text)
    else:
        log(f"Location /{record.project_name}/ already present in default site")
    return True


def setup_nginx(record: DeploymentRecord, system: SystemController):
    header("Setting Up Nginx")
    enable_site = True
    if record.deployment_type == "subdirectory" and default_site_active(system):
        enable_site = not extend_default_site(record, system)

    if enable_site:
        system.write_file(record.nginx_site, generate_nginx_site(record))
        system.run(f"ln -sf {record.nginx_site} {record.nginx_site_enabled}", sudo=True)

    result = system.check_proxy_config()
    if not result.ok:
        error(f"Nginx configuration test failed, not reloading:\n{result.stderr.strip()}")
    system.reload_proxy()
    log("Nginx configured successfully")


def setup_tls(record: DeploymentRecord, system: SystemController) -> bool:
    """:return: True if a certificate was issued"""
    if not record.use_tls:
        return False

    header("Setting Up SSL Certificate")
    domain = record.domain_name
    if is_valid_ip(domain):
        warn("Let's Encrypt does not issue certificates for IP addresses, skipping SSL")
        return False

    server_ip = system.external_ip()
    resolved = resolve_dns_a(domain)
    if server_ip and resolved != server_ip:
        warn(f"DNS: {domain} -> {resolved or 'no A record'}, this server is {server_ip}")

    status_code, _ = check_http_status(f"http://{domain}")
    if not is_responding(status_code):
        warn("Domain might not be accessible yet. SSL setup might fail.")
        warn("Make sure your domain points to this server's IP address.")
        if not confirm("Continue with SSL setup anyway?", default=False):
            warn("SSL setup skipped. You can run it later from the management menu.")
            return False

    result = system.run(
        f"certbot --nginx -d {domain} --non-interactive --agree-tos --email admin@{domain}",
        sudo=True,
        check=False,
    )
    if not result.ok:
        warn("SSL certificate installation failed")
        warn("You can try again later from the management menu")
        return False

    log("SSL certificate installed successfully")
    if not system.run("systemctl enable --now certbot.timer", sudo=True, check=False).ok:
        warn("Could not enable certbot.timer, certificates will not renew automatically")
    return True


def firewall_commands(record: DeploymentRecord) -> list[str]:
    cmds = [
        "ufw default deny incoming",
        "ufw default allow outgoing",
        "ufw allow ssh",
        "ufw allow 'Nginx Full'",
    ]
    if record.deployment_type == "port":
        cmds.append(f"ufw allow {record.proxy_port}/tcp")
    cmds.append("ufw --force enable")
    return cmds


def setup_security(record: DeploymentRecord, system: SystemController):
    if not record.use_security:
        return

    header("Setting Up Security")
    for cmd in firewall_commands(record):
        system.run(cmd, sudo=True)

    if not system.path_exists(FAIL2BAN_JAIL_LOCAL):
        system.run(f"cp {FAIL2BAN_JAIL_CONF} {FAIL2BAN_JAIL_LOCAL}", sudo=True)
    jail = system.read_file(FAIL2BAN_JAIL_LOCAL) or ""
    new_jail, changed = upsert_block(jail, record.jail_name, generate_fail2ban_jail(record))
    if changed:
        system.write_file(FAIL2BAN_JAIL_LOCAL, new_jail)
    else:
        log(f"Fail2Ban jail {record.jail_name} already configured")

    system.write_file(f"/etc/fail2ban/filter.d/{record.jail_name}.conf", generate_fail2ban_filter())
    system.restart_service("fail2ban")
    log("Security setup completed")


def write_manager_script(record: DeploymentRecord, store: ConfigStore, host: str | None = None) -> Path:
    path = store.manager_script(record)
    path.write_text(generate_manager_script(record, host))
    path.chmod(0o755)
    return path


def create_management_scripts(
    record: DeploymentRecord, system: SystemController, store: ConfigStore, host: str | None = None
) -> Path:
    header("Creating Management Scripts")
    system.write_file(
        record.update_script,
        generate_update_script(record),
        owner=record.project_user,
        mode="755",
    )
    path = write_manager_script(record, store, host)
    log("Management scripts created successfully")
    return path


def print_plan(record: DeploymentRecord):
    print()
    print("[yellow]Deployment Summary:[/yellow]")
    print(f"  Project: {record.project_name}")
    print(f"  User: {record.project_user}")
    print(f"  Domain: {record.domain_name}")
    print(f"  Repository: {record.git_repo}")
    port = f" ({record.proxy_port})" if record.deployment_type == "port" else ""
    print(f"  Type: {record.deployment_type}{port}")
    print(f"  SSL: {record.use_tls}")
    print(f"  Security: {record.use_security}")
    print()


def _running(flag: bool, on: str = "RUNNING", off: str = "STOPPED") -> str:
    return f"[green]{on}[/green]" if flag else f"[red]{off}[/red]"


def final_summary(record: DeploymentRecord, system: SystemController, manager_script: Path):
    header("Deployment Summary")
    print("[green]Flask project deployed successfully![/green]")
    print()
    print("[blue]Project Details:[/blue]")
    print(f"  Project Name: {record.project_name}")
    print(f"  Project User: {record.project_user}")
    print(f"  Project Directory: {record.project_dir}")
    print(f"  Domain: {record.domain_name}")
    print(f"  Deployment Type: {record.deployment_type}")

    print()
    print("[blue]Access your application at:[/blue]")
    for url in record.access_urls():
        print(f"  {url}")

    print()
    print("[blue]Management:[/blue]")
    print(f"  Run management menu: {manager_script}")
    print(f"  Update project: sudo -u {record.project_user} {record.update_script}")
    print(f"  Restart service: sudo supervisorctl restart {record.project_name}")
    print(f"  View logs: sudo tail -f {record.app_log}")

    print()
    print("[blue]Important Files:[/blue]")
    print(f"  Nginx config: {record.nginx_site}")
    print(f"  Supervisor config: {record.supervisor_conf}")
    print(f"  Application logs: {record.app_log}")

    print()
    print("[blue]Current Status:[/blue]")
    print(f"  Service: {_running(system.supervisor_state(record.project_name) == 'RUNNING')}")
    print(f"  Nginx: {_running(system.service_active('nginx'))}")
    if record.use_security:
        print(f"  Fail2Ban: {_running(system.service_active('fail2ban'))}")
        ufw = system.run("ufw status", sudo=True, check=False).stdout
        print(f"  Firewall: {_running(ufw.strip().startswith('Status: active'), 'ACTIVE', 'INACTIVE')}")

    if record.use_tls and not is_valid_ip(record.domain_name):
        server_ip = system.external_ip()
        if server_ip and resolve_dns_a(record.domain_name) != server_ip:
            print()
            print("[yellow]SSL Note:[/yellow] Make sure your domain points to this server's IP address")
            print(f"Current server IP: {server_ip}")


def deploy(
    record: DeploymentRecord, system: SystemController, store: ConfigStore, host: str | None = None
) -> Path:
    """Runs every provisioning step. :return: path of the generated manager script"""
    install_dependencies(record, system)
    create_project_user(record, system)
    setup_project(record, system)
    create_gunicorn_script(record, system)
    setup_supervisor(record, system)
    setup_nginx(record, system)
    setup_tls(record, system)
    setup_security(record, system)
    manager_script = create_management_scripts(record, system, store, host)
    store.save(record)
    final_summary(record, system, manager_script)
    return manager_script
