"""Per-backend rules deciding whether a request may trigger a wake signal."""

from .config_manager import BackendConfig


def permits_wake(backend: BackendConfig, host: str, path: str) -> bool:
    """Return True if a request for ``host``/``path`` may wake ``backend``.

    Ignored hosts and paths are exact string matches, not prefixes or patterns.
    """
    if not backend.wol_enable:
        return False
    if host in backend.ignored_hosts:
        return False
    if path in backend.ignored_paths:
        return False
    return True
