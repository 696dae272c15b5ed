"""
Command Line Interface Package

Command Structure:
- bookmatch: Main entry point with utility commands (version, config)
- bookmatch run: Run the matching pipeline over a JSON batch
"""
