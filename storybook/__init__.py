"""
Storybook Pipeline
==================
Turns Spanish manuscripts into audio-synchronised interactive chapters.
"""

__version__ = "0.1.0"
