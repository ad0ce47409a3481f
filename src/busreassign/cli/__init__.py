"""Command-line interface for busreassign."""
