"""Container build description for the front-end image."""
