"""Command line interface for backupchain."""
