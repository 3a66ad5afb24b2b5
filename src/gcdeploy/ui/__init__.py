"""Renderers for the orchestrator: PySide6 window and headless console."""
