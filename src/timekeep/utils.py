import ipaddress
from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def isoformat(value: datetime) -> str:
    """Render a datetime as an ISO 8601 UTC string with millisecond precision."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_public_ip(value: str) -> bool:
    """True for a routable address; private, loopback and malformed addresses return False."""
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return address.is_global
