"""
Signal bot — posts and tracks operator trade signals in Discord.
"""

__version__ = "1.0.0"
