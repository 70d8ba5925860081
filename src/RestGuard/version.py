"""Package version shared by the default User-Agent and the public API."""

__version__ = "0.9.0"

RGUARD_VERSION = __version__
