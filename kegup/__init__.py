"""kegup — upgrade planner for installed packages."""

__version__ = "0.1.0"
