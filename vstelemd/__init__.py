"""
vstelemd - Privacy scanner and cleaner for VS Code telemetry data.

This package contains the components that locate telemetry stored by the
editor and its extensions, grade how privacy-sensitive it is, and remove it
behind verified backups and a rule-based safety gate.
"""

__version__ = "0.1.0"
__author__ = "Taamir Ransome"
__email__ = "taamir@example.com"
