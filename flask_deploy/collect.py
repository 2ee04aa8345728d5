"""Interactive collection of deployment parameters."""

from rich import print

from .record import ConfigStore, DeploymentRecord, is_safe_name
from .system import SystemController
from .ui import ask, ask_int, ask_required, choose, confirm, error, header, log, warn

DEFAULT_PROJECT_NAME = "my-flask-app"
DEFAULT_PROXY_PORT = 8080

QUICK_PROJECT_NAME = "flask-app"
QUICK_PROJECT_USER = "flaskuser"

DEPLOYMENT_MENU = {
    "1": ("main", "Main domain (https://domain.com/)"),
    "2": ("subdirectory", "Subdirectory (https://domain.com/projectname/)"),
    "3": ("port", "Custom port (https://domain.com:8080/)"),
}


def ask_name(prompt: str, default: str) -> str:
    while True:
        value = ask_required(prompt, default)
        if is_safe_name(value):
            return value
        warn("Use letters, digits, '.', '_' or '-' only")


def ask_port(default: int = DEFAULT_PROXY_PORT) -> int:
    while True:
        port = ask_int("Custom port number", default)
        if 1 <= port <= 65535:
            return port
        warn("Port must be between 1 and 65535")


def collect_record(system: SystemController) -> DeploymentRecord:
    header("Flask Project Deployment Configuration")

    project_name = ask_name("Project name (used for service names)", DEFAULT_PROJECT_NAME)
    project_user = ask_name("Project user (will be created)", f"{project_name}user")
    domain_name = ask_required("Domain name or IP address", system.external_ip() or None)
    git_repo = ask_required("Git repository URL")
    app_entry_file = ask_required("Flask app file (e.g., app.py, main.py, server.py)", "app.py")
    app_entry_var = ask_required("Flask app variable name", "app")

    print()
    print("Deployment type options:")
    for key, (_, label) in DEPLOYMENT_MENU.items():
        print(f"{key}) {label}")
    deployment_type = DEPLOYMENT_MENU[choose("Choose deployment type [1-3]", list(DEPLOYMENT_MENU))][0]
    proxy_port = ask_port() if deployment_type == "port" else None

    use_tls = confirm("Setup SSL certificate with Let's Encrypt?", default=True)
    use_security = confirm("Setup security (Fail2Ban, firewall)?", default=True)

    return DeploymentRecord(
        project_name=project_name,
        project_user=project_user,
        domain_name=domain_name,
        git_repo=git_repo,
        app_entry_file=app_entry_file,
        app_entry_var=app_entry_var,
        use_tls=use_tls,
        use_security=use_security,
        deployment_type=deployment_type,
        proxy_port=proxy_port,
    )


def quick_record(system: SystemController) -> DeploymentRecord | None:
    """Fixed defaults; only the repository is asked for.

    :return: record, or None when the user declines
    """
    header("Quick Deployment Mode")
    domain_name = system.external_ip()
    if not domain_name:
        warn("Could not determine this server's external IP")
        domain_name = ask_required("Domain name or IP address")

    print("Quick deployment will use these defaults:")
    print(f"  Project name: {QUICK_PROJECT_NAME}")
    print(f"  User: {QUICK_PROJECT_USER}")
    print(f"  Domain: {domain_name}")
    print("  SSL: Disabled")
    print("  Security: Enabled")
    print()

    git_repo = ask("Git repository URL")
    if not git_repo:
        error("Git repository URL is required")

    if not confirm("Proceed with quick deployment?", default=True):
        return None

    return DeploymentRecord(
        project_name=QUICK_PROJECT_NAME,
        project_user=QUICK_PROJECT_USER,
        domain_name=domain_name,
        git_repo=git_repo,
        use_tls=False,
        use_security=True,
        deployment_type="main",
    )


def resolve_record(store: ConfigStore, system: SystemController) -> DeploymentRecord:
    """Reuses the stored record if the user agrees, else collects and saves a new one."""
    record = store.load()
    if record:
        log(f"Found existing configuration for project: {record.project_name}")
        if confirm("Use existing configuration?", default=True):
            return record
    record = collect_record(system)
    store.save(record)
    return record
