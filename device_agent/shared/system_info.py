"""
Host information reported on registration.
"""

import platform


def get_os_info() -> str:
    """
    Describe the host OS, e.g. ``"Windows 10 (AMD64)"`` or ``"Linux 6.8.0 (x86_64)"``.
    """
    system = platform.system() or "unknown"
    release = platform.release()
    machine = platform.machine()

    info = f"{system} {release}".strip()
    if machine:
        info = f"{info} ({machine})"
    return info


__all__ = ["get_os_info"]
