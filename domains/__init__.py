"""Domain modules for the medication reminder bot."""
