#!/usr/bin/env python3
"""
Ghostline Remote - Telegram remote control for the Ghostline control system.

Run from a checkout without installing: ``python main.py run``.
"""
from ghostline.cli import main


if __name__ == "__main__":
    main()
