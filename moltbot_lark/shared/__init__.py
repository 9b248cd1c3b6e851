"""
Shared Module - Common constants
"""

from .constants import *
