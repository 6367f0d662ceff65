"""
Lightswitch - switches lighting profiles when applications start.

This package watches process exec/exit events, matches executables
against a hot-reloadable rule table and asks the lighting daemon to
switch its active profile or slot over D-Bus.
"""

__version__ = "0.1.0"
