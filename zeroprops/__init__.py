"""Property sharing between peers over WebSockets, with mDNS discovery."""

__version__ = "0.1.0"