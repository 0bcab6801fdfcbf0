"""Runtime configuration for Repo Radar."""
