from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("encoder-ops")
except PackageNotFoundError:
    __version__ = "0.0.0"
