"""Mnemo CLI: command-line access to agent memory."""
