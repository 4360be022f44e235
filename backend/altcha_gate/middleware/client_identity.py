from dataclasses import dataclass

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"
DEFAULT_DOMAIN = "localhost"


def get_client_ip(request: Request) -> str:
    """Extract the real client IP, trusting the headers set by our proxy.

    The reverse proxy (nginx) must overwrite X-Forwarded-For and X-Real-IP;
    anything a client sends in them directly is taken at face value.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP (original client)
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


def strip_port(host: str) -> str:
    """Drop a trailing ``:port`` from a Host value, keeping IPv6 literals whole."""
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    if host.count(":") == 1:
        return host.split(":")[0]
    return host


def get_host_domain(request: Request) -> str:
    host = request.headers.get("host", "").strip()
    domain = strip_port(host).lower()
    return domain or DEFAULT_DOMAIN


@dataclass(frozen=True)
class ClientIdentity:
    """Who is asking, as far as the proxy headers tell us."""

    client_ip: str
    domain: str


def resolve_client(request: Request) -> ClientIdentity:
    """Dependency for FastAPI endpoints; also bound into the log context by LoggingMiddleware."""
    return ClientIdentity(client_ip=get_client_ip(request), domain=get_host_domain(request))
