"""Memory store backends, one subpackage per tier."""
