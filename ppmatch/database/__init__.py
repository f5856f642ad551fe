"""
PPMatch - Record Store
======================

In-process store of PP records, unified profiles and technology
associations.
"""

from .store import RecordFilter, RecordStore

__all__ = ['RecordFilter', 'RecordStore']
