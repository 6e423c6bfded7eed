"""Parts for an frp-style proxy client: PBKDF2, INI parsing, login state,
control messages, a telnet server and download services."""

__version__ = "0.1.0"