from __future__ import annotations

import sys


DEVELOPER_MODE_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\AppModelUnlock"
DEVELOPER_MODE_VALUE = "AllowDevelopmentWithoutDevLicense"


class PreconditionError(RuntimeError):
    """Raised before any mutation when the run cannot proceed safely."""


def _is_windows_admin() -> bool:
    import ctypes

    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except (AttributeError, OSError):
        return False


def _windows_developer_mode() -> bool:
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, DEVELOPER_MODE_KEY) as key:
            value, _ = winreg.QueryValueEx(key, DEVELOPER_MODE_VALUE)
    except OSError:
        return False
    return bool(value)


def symlink_privilege_available() -> bool:
    """Symbolic links on Windows need an elevated process or Developer Mode."""
    if sys.platform != "win32":
        return True
    return _is_windows_admin() or _windows_developer_mode()


def require_symlink_privilege() -> None:
    if not symlink_privilege_available():
        raise PreconditionError(
            "Creating symbolic links requires an elevated shell or Windows Developer Mode; "
            "re-run from an administrator terminal"
        )
