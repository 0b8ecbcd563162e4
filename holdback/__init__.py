# holdback/__init__.py - Holdback dashboard backend and sync library

__version__ = "1.0.0"
