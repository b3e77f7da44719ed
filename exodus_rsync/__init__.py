"""rsync-style option handling, tree walking, logging and publish objects for a content gateway."""

__version__ = "0.1.0"