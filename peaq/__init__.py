"""pyPEAQ"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pypeaq")
except PackageNotFoundError:
    # package is not installed
    pass
