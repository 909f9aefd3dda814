"""
ServiceFinder Sync CLI - Command-line interface for the sync client.

This package provides CLI commands for running the pollers of a
signed-in session and managing the client's local configuration and
persisted de-duplication state.

Commands:
- watch: Run the pollers and print notifications as they arrive
- config: Show or update the client configuration
- state: Inspect or clear persisted de-duplication state
"""
