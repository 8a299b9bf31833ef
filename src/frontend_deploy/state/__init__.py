"""Persistent record of deployment runs."""
