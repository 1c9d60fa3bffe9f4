"""Shell command execution with timeouts, cancellation, and a command denylist."""
