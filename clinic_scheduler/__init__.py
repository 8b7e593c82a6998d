"""Clinic staff scheduling: fair leave-slot allocation and shift auto-assignment."""

__version__ = "1.0.0"
