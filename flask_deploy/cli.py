"""Deploy a Flask app with gunicorn, supervisor, nginx and optional SSL/security.

Run as a regular user with passwordless sudo on the target server.

Usage: flask-deploy [--quick | --manage] [--config PATH] [--host USER@HOST]

Examples:
    flask-deploy                 Interactive deployment
    flask-deploy --quick         Quick deployment with minimal prompts
    flask-deploy --manage        Open management menu
    flask-deploy --host deploy@203.0.113.7
"""

import os
import sys
from pathlib import Path

import cyclopts
from rich import print

from . import __version__
from .collect import quick_record, resolve_record
from .deploy import check_prerequisites, deploy, print_plan, write_manager_script
from .record import CONFIG_FILENAME, ConfigStore, ConfigWriteError
from .system import open_system
from .ui import confirm, error, header, log, warn

app = cyclopts.App(
    name="flask-deploy",
    help="Deploy and manage a Flask application server",
    version=__version__,
    default_parameter=cyclopts.Parameter(negative=()),
)


def open_manager(store: ConfigStore, host: str | None = None):
    """Replaces this process with the generated management script."""
    record = store.load()
    if record is None:
        error("No deployment configuration found. Run deployment first.")
    script = store.manager_script(record)
    if not script.exists():
        warn(f"{script} not found, regenerating it from {store.path}")
        script = write_manager_script(record, store, host)
    os.execv(sys.executable, [sys.executable, str(script)])


def print_intro():
    header("Flask Auto-Deploy")
    print("This will deploy a Flask application with:")
    print("  User creation and project setup")
    print("  Gunicorn + Supervisor configuration")
    print("  Nginx reverse proxy setup")
    print("  Optional SSL certificate (Let's Encrypt)")
    print("  Optional security hardening (Fail2Ban, firewall)")
    print("  Management menu for maintenance")
    print()


@app.default
def run(
    *,
    quick: bool = False,
    manage: bool = False,
    config: Path = Path(CONFIG_FILENAME),
    host: str | None = None,
):
    """Deploy a Flask project, or manage an existing deployment.

    :param quick: Quick deployment with minimal prompts
    :param manage: Open the management menu of the deployed project
    :param config: Deployment configuration file
    :param host: Deploy over SSH to USER@HOST instead of this machine
    """
    if quick and manage:
        error("--quick and --manage cannot be combined")

    store = ConfigStore(config)
    system = open_system(host)
    check_prerequisites(system)

    if manage:
        open_manager(store, host)
        return

    try:
        if quick:
            record = quick_record(system)
            if record is None:
                print("Deployment cancelled.")
                return
            store.save(record)
        else:
            print_intro()
            record = resolve_record(store, system)
            print_plan(record)
            if not confirm("Proceed with deployment?", default=True):
                print("Deployment cancelled.")
                return

        deploy(record, system, store, host)
    except ConfigWriteError as e:
        error(str(e))

    print()
    log("Deployment completed successfully!")
    if confirm("Open management menu now?", default=True):
        open_manager(store, host)


def main():
    try:
        app(exit_on_error=False)
    except cyclopts.CycloptsError:
        print("Use --help for usage information")
        sys.exit(1)
