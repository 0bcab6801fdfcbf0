"""Flask JSON adapter for Repo Radar."""
