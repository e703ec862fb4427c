#!/usr/bin/env python
"""
VoiceNote - Direct launcher
Run with: python main.py record
"""

import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

# Now import and run
from voicenote.main import cli


if __name__ == "__main__":
    cli()
