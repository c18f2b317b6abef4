"""
Cabinet portal external integrations: OneDrive and Google Calendar sync.
"""

__version__ = "1.0.0"
