"""kryten-arcade — Chat-driven chip games, polls and timed events."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kryten-arcade")
except PackageNotFoundError:
    __version__ = "0.0.0"
