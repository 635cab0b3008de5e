"""Core onboarding and authentication services."""
