"""rompack: build, sign and manage ROM packages for a handheld device.

The pipeline turns a compiled WebAssembly module plus raw assets into a
signed, size-bounded package and manages a host-side VFS mirroring device
storage. Prefer :mod:`rompack.api` for programmatic use and
:mod:`rompack.cli` for the command line.
"""

__version__ = "0.1.0"

__all__ = ["__version__", "get_api_module"]


def get_api_module():
    """Lazily import and return the API module."""
    from . import api as _api

    return _api
