from . import handler  # noqa: F401
