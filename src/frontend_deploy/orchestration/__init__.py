"""Ordered execution of the deployment steps."""
