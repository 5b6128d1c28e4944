"""Utility helpers for listenlog."""
