"""Pure Python utilities for RiseUp.

This module contains pure Python functions with ZERO Home Assistant dependencies.
All functions here can be unit tested without Home Assistant mocking.

Submodules:
    - dt_utils: Timestamp parsing and formatting
    - firestore_codec: Firestore REST typed-value encoding/decoding

Usage:
    from . import dt_utils
    from .firestore_codec import encode_fields
"""

from . import dt_utils, firestore_codec

__all__ = ["dt_utils", "firestore_codec"]
