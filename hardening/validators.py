"""
Input Validators

License: MIT
"""

import ipaddress
import re

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")


def validate_ip(value: str) -> bool:
    """Accept an IPv4/IPv6 address or network in CIDR notation."""
    try:
        if "/" in value:
            ipaddress.ip_network(value, strict=False)
        else:
            ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def validate_port(value) -> bool:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return False
    return 1 <= port <= 65535


def validate_username(value: str) -> bool:
    """POSIX-style login name, 3 to 32 characters."""
    return 3 <= len(value) <= 32 and USERNAME_PATTERN.match(value) is not None
