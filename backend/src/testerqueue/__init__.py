"""Per-region tester queue with fair reopen and round-robin session assignment."""
