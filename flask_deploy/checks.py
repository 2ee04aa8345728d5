"""HTTP, DNS and certificate probes plus the pure classifiers built on them."""

import time
import urllib.error
import urllib.request
from datetime import datetime, timezone

import dns.resolver

HTTP_TIMEOUT = 10
RESPONDING_CODES = (200, 301, 302)
CERT_WARNING_DAYS = 30
CERT_CRITICAL_DAYS = 7


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


_opener = urllib.request.build_opener(_NoRedirect)


def is_valid_ip(ip: str) -> bool:
    parts = ip.split(".")
    return len(parts) == 4 and all(
        part.isdigit() and 0 <= int(part) <= 255 for part in parts
    )


def resolve_dns_a(domain: str, nameserver: str = "8.8.8.8") -> str | None:
    """Resolve domain to IPv4 address using specified nameserver.

    :param domain: Domain name to resolve
    :param nameserver: DNS nameserver IP (default: 8.8.8.8)
    :return: First A record IP address, or None if resolution fails
    """
    try:
        resolver = dns.resolver.Resolver()
        resolver.nameservers = [nameserver]
        answer = resolver.resolve(domain, "A")
        return str(answer[0]) if answer else None
    except Exception:
        return None


def check_http_status(url: str, timeout: int = HTTP_TIMEOUT) -> tuple[int | None, str]:
    """Check HTTP/HTTPS status of a URL without following redirects.

    :param url: URL to check (http:// or https://)
    :param timeout: Connection timeout in seconds
    :return: Tuple of (status_code, first_line_of_response) or (None, error_message)
    """
    try:
        req = urllib.request.Request(url, method="GET")
        with _opener.open(req, timeout=timeout) as response:
            status_code = response.getcode()
            return status_code, f"HTTP {status_code} {response.reason}"
    except urllib.error.HTTPError as e:
        return e.code, f"HTTP {e.code} {e.reason}"
    except urllib.error.URLError as e:
        return None, str(e.reason)
    except Exception as e:
        return None, str(e)


def timed_http_status(url: str, timeout: int = HTTP_TIMEOUT) -> tuple[int | None, str, float]:
    """:return: (status_code, response line, elapsed seconds)"""
    start = time.monotonic()
    status_code, line = check_http_status(url, timeout=timeout)
    return status_code, line, time.monotonic() - start


def is_responding(status_code: int | None) -> bool:
    return status_code in RESPONDING_CODES


def classify_status(status_code: int | None) -> str:
    if status_code is None:
        return "connection failed"
    if 200 <= status_code < 300:
        return "ok"
    if 300 <= status_code < 400:
        return "redirect"
    if 400 <= status_code < 500:
        return "client error"
    if status_code >= 500:
        return "server error"
    return "unknown"


def parse_openssl_enddate(output: str) -> datetime | None:
    """Parses ``openssl x509 -enddate`` output, e.g.
    ``notAfter=Jan  1 00:00:00 2027 GMT``."""
    for line in output.splitlines():
        if line.startswith("notAfter="):
            value = " ".join(line.split("=", 1)[1].split())
            try:
                expiry = datetime.strptime(value, "%b %d %H:%M:%S %Y %Z")
            except ValueError:
                return None
            return expiry.replace(tzinfo=timezone.utc)
    return None


def days_until(expiry: datetime, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    return (expiry - now).days


def classify_cert_expiry(days: int) -> str:
    """More than 30 days is normal, 8-30 is warning, 7 or fewer is critical."""
    if days <= CERT_CRITICAL_DAYS:
        return "critical"
    if days <= CERT_WARNING_DAYS:
        return "warning"
    return "normal"


def parse_free_memory(output: str) -> tuple[int, int] | None:
    """:return: (used_mb, total_mb) from ``free -m``"""
    for line in output.splitlines():
        if line.startswith("Mem:"):
            parts = line.split()
            try:
                return int(parts[2]), int(parts[1])
            except (IndexError, ValueError):
                return None
    return None


def parse_disk_usage(output: str) -> int | None:
    """:return: used percentage from the last line of ``df -P``"""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    parts = lines[-1].split()
    try:
        return int(parts[4].rstrip("%"))
    except (IndexError, ValueError):
        return None


def usage_color(percent: float) -> str:
    if percent >= 90:
        return "red"
    if percent >= 75:
        return "yellow"
    return "green"
