"""Test helpers for Agent Context."""
