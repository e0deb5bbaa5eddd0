"""
Configuration file for directory paths
"""
from __future__ import annotations

from pathlib import Path

# Define the base project directory
BASE_DIR = Path(__file__).parent.parent

# Default location for built atlas stores
ATLAS_DIR = BASE_DIR / 'user' / 'atlas'
