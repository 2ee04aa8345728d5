"""Provision a Flask application server and manage it afterwards.

``flask-deploy`` installs the system packages, creates the runtime user,
clones and builds the project, wires gunicorn behind supervisor and nginx,
optionally issues a Let's Encrypt certificate and hardens the firewall, and
generates a per-project management menu.
"""

__version__ = "1.0.0"
