"""Paper Trails configuration."""
