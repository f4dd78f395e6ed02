"""Deployment orchestration engine for on-premises application instances."""

__version__ = "0.1.0"
