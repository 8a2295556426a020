"""Game Server Manager: Discord-driven lifecycle control for game servers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("game-server-manager")
except PackageNotFoundError:
    __version__ = "0.0.0"
