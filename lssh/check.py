"""
Upfront validation of execution requests, run before any connection is
attempted.
"""

from typing import Iterable, List, Sequence

from .errors import ValidationError

# Author: Vamsi


def check_hosts(hosts: Sequence[str], names: Iterable[str]) -> List[str]:
    """
    Validate the requested host list.

    :param hosts: Requested server names
    :param names: Configured server names
    :return: The host list
    :raises ValidationError: If no host is given or one is unknown
    """
    if not hosts:
        raise ValidationError("No servers selected.")

    names = set(names)
    unknown = [host for host in hosts if host not in names]
    if unknown:
        raise ValidationError(f"Input Server not found from list: {', '.join(unknown)}")

    return list(hosts)
