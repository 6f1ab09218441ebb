"""
Per-user application directories for logs and run output.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

OWNER_ONLY = 0o700


def get_secure_app_directory(
    app_name: str = "peerstack",
    subdirectory: Optional[str] = None,
) -> Path:
    """
    Return an existing, writable, user-private directory for ``app_name``.

    The base is ``%LOCALAPPDATA%`` on Windows and ``$XDG_DATA_HOME``
    (default ``~/.local/share``) elsewhere. If it cannot be written, a new
    owner-only temporary directory named after the app and subdirectory is
    returned instead.
    """
    parts = [subdirectory] if subdirectory else []
    target = _get_platform_specific_directory(app_name).joinpath(*parts)

    try:
        target.mkdir(parents=True, exist_ok=True)
        _test_directory_writable(target)
    except OSError:
        return _create_secure_temp_directory(
            prefix=f"{app_name}_", suffix=f"_{subdirectory or 'data'}"
        )
    return target


def _get_platform_specific_directory(app_name: str) -> Path:
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA") or tempfile.gettempdir()
    else:
        base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / app_name


def _test_directory_writable(directory: Path) -> None:
    """Raise OSError unless a file can be created and removed in ``directory``."""
    marker = directory / f".peerstack-write-check-{os.getpid()}"
    marker.write_bytes(b"")
    marker.unlink()


def _create_secure_temp_directory(prefix: str, suffix: str) -> Path:
    path = Path(tempfile.mkdtemp(prefix=prefix, suffix=suffix))
    path.chmod(OWNER_ONLY)
    return path
