"""HTTP rate limiting for security-sensitive endpoints.

This limits requests per client IP at the edge. The per-account login
throttle in :mod:`backoffice_api.services.login_throttle` is separate.
"""

from ipaddress import ip_address, ip_network
from typing import Sequence

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from backoffice_api.config import get_settings


def _get_trusted_proxies() -> Sequence[str]:
    """Get list of trusted proxy IP ranges from configuration.

    Returns:
        List of IP addresses or CIDR ranges that are trusted proxies.
    """
    settings = get_settings()

    if settings.trusted_proxies_list:
        return settings.trusted_proxies_list

    # Default: trust localhost and private ranges in development
    if settings.environment == "development":
        return ["127.0.0.1", "::1", "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]

    return []


def _is_trusted_proxy(client_ip: str, trusted_proxies: Sequence[str]) -> bool:
    """Check if client IP is a trusted proxy.

    Args:
        client_ip: The IP address to check.
        trusted_proxies: List of trusted IP addresses or CIDR ranges.

    Returns:
        True if the IP is trusted.
    """
    if not trusted_proxies:
        return False

    try:
        addr = ip_address(client_ip)
        for proxy in trusted_proxies:
            if "/" in proxy:
                if addr in ip_network(proxy, strict=False):
                    return True
            elif addr == ip_address(proxy):
                return True
    except ValueError:
        return False

    return False


def get_real_client_ip(request: Request) -> str:
    """Extract the client IP, honouring forwarded headers only from trusted proxies.

    Args:
        request: The incoming request object.

    Returns:
        The client IP address.
    """
    direct_ip = get_remote_address(request)

    if _is_trusted_proxy(direct_ip, _get_trusted_proxies()):
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First entry is the originating client
            client_ip = forwarded_for.split(",")[0].strip()
            try:
                ip_address(client_ip)
                return client_ip
            except ValueError:
                pass

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            try:
                ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

    return direct_ip


def _get_rate_limit_settings() -> dict[str, str]:
    """Get rate limit strings from configuration."""
    settings = get_settings()
    return {
        "default": f"{settings.rate_limit_default}/minute",
        "auth_login": f"{settings.rate_limit_auth_login}/minute",
        "auth_refresh": f"{settings.rate_limit_auth_refresh}/minute",
        "auth_password_change": f"{settings.rate_limit_auth_password_change}/minute",
        "auth_logout": f"{settings.rate_limit_auth_logout}/minute",
        "sensitive": f"{settings.rate_limit_sensitive}/minute",
    }


_rate_limits = _get_rate_limit_settings()

# In-memory unless a storage URI (e.g. redis://) is configured
limiter = Limiter(
    key_func=get_real_client_ip,
    default_limits=[_rate_limits["default"]],
    storage_uri=get_settings().rate_limit_storage_uri or "memory://",
    enabled=get_settings().rate_limit_enabled,
)

AUTH_LOGIN_LIMIT = _rate_limits["auth_login"]
AUTH_REFRESH_LIMIT = _rate_limits["auth_refresh"]
AUTH_PASSWORD_CHANGE_LIMIT = _rate_limits["auth_password_change"]
AUTH_LOGOUT_LIMIT = _rate_limits["auth_logout"]
SENSITIVE_OPERATION_LIMIT = _rate_limits["sensitive"]
API_DEFAULT_LIMIT = _rate_limits["default"]

# Backup operations are expensive; keep them tight
BACKUP_CREATE_LIMIT = "10/hour"
BACKUP_RESTORE_LIMIT = "5/hour"
BACKUP_INFO_LIMIT = "30/minute"
