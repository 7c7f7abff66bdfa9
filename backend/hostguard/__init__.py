"""hostguard: health, performance and abuse-mitigation monitoring engine."""

__version__ = "0.1.0"
