"""Startup sourcing: discovery, qualification and founder outreach."""
