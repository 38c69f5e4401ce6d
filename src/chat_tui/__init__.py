"""chat-tui: interactive terminal front end for a tool-execution engine."""
