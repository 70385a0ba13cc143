"""Core SQL helpers shared by every dialect."""
