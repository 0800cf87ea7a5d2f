"""
Entry point for running topiclink as a module.

This allows the package to be executed with: python -m topiclink
"""

from topiclink.cli import app

if __name__ == "__main__":
    app()
