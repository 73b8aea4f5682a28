"""Presentation layer.

Only :mod:`jarvis.ui.overlay_window` imports Qt; everything else here runs
headless.
"""
