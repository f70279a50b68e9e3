"""Real-time chat client: session management, live message feed and contact handshake."""

__version__ = "0.1.0"
