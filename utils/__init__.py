"""
Utilities Package for Fleet Watchdog

Logging setup, URL validation and small formatting helpers.
"""
