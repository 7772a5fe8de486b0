"""Core runtime support for mgrep-local: configuration and backend selection."""
