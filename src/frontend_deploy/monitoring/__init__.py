"""Post-deployment status checks."""
