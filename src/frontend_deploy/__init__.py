"""Containerize a front-end web application and deploy it to Amazon ECS."""

__version__ = "0.1.0"
