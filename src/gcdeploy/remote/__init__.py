"""Remote side: key loading, instance lookup and the PTY session."""
