"""mgrep-local test package."""
