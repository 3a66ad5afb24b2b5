"""Local shell command execution."""
