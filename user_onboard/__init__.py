"""User onboarding and token authentication service."""

__version__ = "0.1.0"
