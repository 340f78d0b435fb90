"""Audio file and device I/O."""
