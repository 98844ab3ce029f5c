"""
Profiler Engine Package

Processed performance profiles: columnar tables, call trees, transforms,
markers, source/assembly timings, profile comparison and a query adapter.
"""

from .string_table import StringTable
from .profile_types import (
    Category,
    Lib,
    Profile,
    ProfileMeta,
    Thread,
)
from .profile_loader import ProfileLoadError, load_profile, process_profile
from .config import ProfilerSettings, get_settings, load_settings
from .profile_query import ProfileQuerier, RangeParseError, TimestampManager

__all__ = [
    # Tables
    'StringTable',
    'Category',
    'Lib',
    'Profile',
    'ProfileMeta',
    'Thread',
    # Loading
    'ProfileLoadError',
    'load_profile',
    'process_profile',
    # Settings
    'ProfilerSettings',
    'get_settings',
    'load_settings',
    # Queries
    'ProfileQuerier',
    'RangeParseError',
    'TimestampManager',
]
