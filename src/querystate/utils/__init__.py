"""Utility helpers for querystate."""
