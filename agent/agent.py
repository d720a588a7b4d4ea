"""
DeskGuard — Desktop Security Monitor Agent
==========================================
PRIVACY: Input monitoring records only activity COUNTS (keystrokes,
clicks, pointer distance). It never captures typed text or screen content.

Events are written to events.jsonl next to the config; alerts go out over
the channels configured in config.json ("alerts" block).

Usage:
    python agent.py
"""

from deskguard_core.runner import run_with_auto_restart


if __name__ == "__main__":
    run_with_auto_restart()
