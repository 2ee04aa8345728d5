"""Configuration text rendered for gunicorn, supervisor, nginx, fail2ban and the manager."""

import sys
from textwrap import dedent, indent

from .record import DeploymentRecord

NUM_WORKERS = 3
F2B_MAXRETRY = 10
F2B_BANTIME = 3600


def generate_gunicorn_start(record: DeploymentRecord) -> str:
    return dedent(f"""
        #!/bin/bash
        NAME="{record.project_name}"
        PROJECTDIR="{record.project_dir}"
        SOCKFILE="{record.socket_path}"
        NUM_WORKERS={NUM_WORKERS}

        echo "Starting $NAME as $(whoami)"

        cd $PROJECTDIR
        source venv/bin/activate

        export PYTHONPATH=$PROJECTDIR:$PYTHONPATH

        RUNDIR=$(dirname $SOCKFILE)
        test -d $RUNDIR || mkdir -p $RUNDIR
        test -S $SOCKFILE && rm $SOCKFILE

        exec venv/bin/gunicorn {record.app_module} \\
          --name $NAME \\
          --workers $NUM_WORKERS \\
          --bind=unix:$SOCKFILE \\
          --log-level=info \\
          --log-file=-
    """).lstrip()


def generate_supervisor_config(record: DeploymentRecord) -> str:
    return dedent(f"""
        [program:{record.project_name}]
        command={record.start_script}
        user={record.project_user}
        stdout_logfile={record.app_log}
        redirect_stderr=true
        environment=LANG="en_US.UTF-8",LC_ALL="en_US.UTF-8"
        autostart=true
        autorestart=true
        stopasgroup=true
        killasgroup=true
    """).lstrip()


def _proxy_headers(record: DeploymentRecord) -> str:
    return dedent(f"""
        proxy_set_header Host $http_host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_pass http://unix:{record.socket_path};
    """).strip()


def _deny_probes() -> str:
    return dedent(r"""
        location ~* /(wp-admin|wp-login\.php|phpmyadmin|xmlrpc\.php|cgi-bin) {
            deny all;
            return 404;
        }

        location ~* \.(env|git|sql|log|ini|conf|bak)$ {
            deny all;
            return 404;
        }

        location ~ /\.(?!well-known) {
            deny all;
            return 404;
        }
    """).strip()


def generate_nginx_server_block(record: DeploymentRecord, listen: str, deny_probes: bool) -> str:
    """Dedicated virtual host proxying everything but ``/static/`` to the socket.

    :param listen: listen directive, "80" for main deployments or the custom port
    :param deny_probes: reject common exploit-probe paths and secret files
    """
    sections = [
        f"listen {listen};\nserver_name {record.domain_name};",
        dedent("""
            add_header X-Frame-Options DENY always;
            add_header X-Content-Type-Options nosniff always;
            add_header X-XSS-Protection "1; mode=block" always;
        """).strip(),
        "server_tokens off;",
        f"access_log {record.access_log};\nerror_log {record.error_log};",
        "client_max_body_size 4M;",
    ]
    if deny_probes:
        sections.append(_deny_probes())
    sections.append(
        dedent(f"""
            location /static/ {{
                alias {record.project_dir}/static/;
                expires 1y;
                add_header Cache-Control "public, immutable";
            }}
        """).strip()
    )
    location_root = "\n".join(
        [
            "location / {",
            indent(_proxy_headers(record), "    "),
            "    proxy_redirect off;",
            "    proxy_buffering off;",
            "    proxy_read_timeout 300s;",
            "    proxy_connect_timeout 75s;",
            "}",
        ]
    )
    sections.append(location_root)
    body = "\n\n".join(indent(s, "    ") for s in sections)
    return f"server {{\n{body}\n}}\n"


def generate_subdirectory_locations(record: DeploymentRecord) -> str:
    """Locations serving the app under ``/{project_name}/``."""
    name = record.project_name
    return "\n".join(
        [
            f"location /{name}/static/ {{",
            f"    alias {record.project_dir}/static/;",
            "    expires 1y;",
            "}",
            "",
            f"location /{name}/ {{",
            f"    access_log {record.access_log};",
            f"    error_log {record.error_log};",
            f"    rewrite ^/{name}/(.*) /$1 break;",
            indent(_proxy_headers(record), "    "),
            f"    proxy_set_header X-Forwarded-Prefix /{name};",
            "}",
        ]
    )


def generate_subdirectory_site(record: DeploymentRecord) -> str:
    """Standalone host used when there is no default site to extend."""
    sections = [
        f"listen 80;\nserver_name {record.domain_name};",
        "server_tokens off;",
        f"access_log {record.access_log};\nerror_log {record.error_log};",
        generate_subdirectory_locations(record),
        dedent(f"""
            location / {{
                default_type text/plain;
                return 200 "Server is running. Access your Flask app at /{record.project_name}/\\n";
            }}
        """).strip(),
    ]
    body = "\n\n".join(indent(s, "    ") for s in sections)
    return f"server {{\n{body}\n}}\n"


def generate_nginx_site(record: DeploymentRecord) -> str:
    if record.deployment_type == "port":
        return generate_nginx_server_block(record, str(record.proxy_port), deny_probes=False)
    if record.deployment_type == "subdirectory":
        return generate_subdirectory_site(record)
    return generate_nginx_server_block(record, "80", deny_probes=True)


def generate_fail2ban_jail(record: DeploymentRecord) -> str:
    ports = "http,https"
    if record.deployment_type == "port":
        ports += f",{record.proxy_port}"
    return dedent(f"""
        [{record.jail_name}]
        enabled = true
        port = {ports}
        filter = {record.jail_name}
        logpath = {record.access_log}
        maxretry = {F2B_MAXRETRY}
        bantime = {F2B_BANTIME}
    """).strip()


def generate_fail2ban_filter() -> str:
    return dedent(r"""
        [Definition]
        failregex = ^<HOST> -.*"(GET|POST|HEAD).*HTTP.*" (4|5)\d\d
                    ^<HOST> -.*".*sqlmap.*"
                    ^<HOST> -.*".*union.*select.*"
        ignoreregex =
    """).lstrip()


def generate_update_script(record: DeploymentRecord) -> str:
    return dedent(f"""
        #!/bin/bash
        set -e

        PROJECT_NAME="{record.project_name}"
        PROJECT_DIR="{record.project_dir}"

        echo "Updating $PROJECT_NAME..."
        cd "$PROJECT_DIR"

        BACKUP_DIR="$PROJECT_DIR/backups"
        mkdir -p "$BACKUP_DIR"
        grep -qx "backups/" .git/info/exclude 2>/dev/null || echo "backups/" >> .git/info/exclude
        git bundle create "$BACKUP_DIR/backup-$(date +%Y%m%d-%H%M%S).bundle" --all 2>/dev/null || true

        OLD_HEAD=$(git rev-parse HEAD)
        BRANCH=$(git rev-parse --abbrev-ref HEAD)
        git fetch origin
        git pull --ff-only origin "$BRANCH"

        if git diff --name-only "$OLD_HEAD" HEAD | grep -qx "requirements.txt"; then
            echo "requirements.txt changed, updating dependencies..."
            venv/bin/pip install --upgrade pip
            venv/bin/pip install -r requirements.txt
        fi

        echo "Update completed. Restart the service to apply changes."
    """).lstrip()


def generate_manager_script(record: DeploymentRecord, host: str | None = None) -> str:
    """Launcher with the record embedded as literals."""
    return dedent(f"""
        #!{sys.executable}
        \"\"\"Management menu for {record.project_name}. Generated by flask-deploy.\"\"\"

        from flask_deploy.manager import main
        from flask_deploy.record import DeploymentRecord

        RECORD = DeploymentRecord(
            project_name={record.project_name!r},
            project_user={record.project_user!r},
            domain_name={record.domain_name!r},
            git_repo={record.git_repo!r},
            app_entry_file={record.app_entry_file!r},
            app_entry_var={record.app_entry_var!r},
            use_tls={record.use_tls!r},
            use_security={record.use_security!r},
            deployment_type={record.deployment_type!r},
            proxy_port={record.proxy_port!r},
        )
        HOST = {host!r}

        if __name__ == "__main__":
            main(RECORD, host=HOST)
    """).lstrip()
