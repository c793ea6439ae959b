"""email-oauth - Browser-based OAuth sign-in and token refresh for email accounts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("email-oauth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "OAuthManager",
    "OutputHandler",
]


# Lazy imports keep `--help` fast and avoid loading cryptography up front
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Settings", "load_settings"):
        from .config import Settings, load_settings
        return {"Settings": Settings, "load_settings": load_settings}[name]
    elif name == "OAuthManager":
        from .oauth import OAuthManager
        return OAuthManager
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
