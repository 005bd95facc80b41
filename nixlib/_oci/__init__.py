# Register hookspecs as soon as the package is imported
from . import hooks  # noqa: F401
