"""aictx - attribute AI-generated code to the chat exchange that produced it."""

__version__ = "0.1.0"
