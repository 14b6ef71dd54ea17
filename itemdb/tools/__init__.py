"""Command line tools for ItemDB."""
