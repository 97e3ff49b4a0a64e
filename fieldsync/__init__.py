# =======================================================================================
# fieldsync/__init__.py - Package Initialization
# =======================================================================================
"""
FieldSync - Offline-Tolerant Field Scan Capture

Handheld units capture tag scans into a durable local queue and sync them when
connectivity allows; the server accepts each scan exactly once and pushes it
live to every connected client.
"""

__version__ = "1.0.0"
__author__ = "FieldSync Team"
