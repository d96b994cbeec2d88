"""Finora command-line application."""
