"""Hotel PMS reservation engine: identifiers, permissions and booking lifecycle."""

__version__ = "0.1.0"
