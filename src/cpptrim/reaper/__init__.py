"""Back end: turning analysis results into text edits."""
