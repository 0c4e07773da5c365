"""Job entry points (Lambda handler, worker pool)."""
