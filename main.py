#!/usr/bin/env python3
"""
anv - Main entry point
Search AllAnime and stream episodes through mpv, resuming where you left off.
"""
import sys

try:
    from anv.cli import main
except ImportError as e:
    print(f"Error: Failed to import anv package. {e}")
    print("Make sure you have installed the package correctly:")
    print("  pip install -e .")
    sys.exit(1)

if __name__ == "__main__":
    main()
