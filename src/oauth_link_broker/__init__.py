"""OAuth link broker: connect external ad accounts to application users via a popup flow."""

__version__ = "0.1.0"
