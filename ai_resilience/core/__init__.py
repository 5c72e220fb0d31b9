"""
Core modules for the AI request orchestration layer.

This package contains the request manager and its admission controls,
prompt templating, fallbacks and the AI operation facade.
"""
