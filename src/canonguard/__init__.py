"""canonguard - spoiler-safe context composition for AI-assisted fiction."""

__version__ = "0.1.0"
