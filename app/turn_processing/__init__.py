"""Turn/action processing helpers.

This package centralizes validation and canvas hand-off rules so every room
transition goes through the same checks and shows up consistently in server logs.
"""
