"""
Telegram remote-control module for Ghostline.

A long-polling bot that binds a single operator, renders a button menu and
forwards operator intents to the control system.
"""
