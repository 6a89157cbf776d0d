"""DropManager: turns free-text check-ins into tracked tasks and project insight."""

__version__ = "0.1.0"
