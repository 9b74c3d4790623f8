"""Google sign-in and Calendar meeting scheduling backend."""

__version__ = "0.1.0"
