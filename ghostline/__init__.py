"""
Ghostline Remote - Telegram remote control for the Ghostline control system.
"""
__version__ = "4.1.0"
