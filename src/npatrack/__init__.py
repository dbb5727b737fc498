"""npatrack: recovery tracking for non-performing loan accounts.

This package contains the core source code for the npatrack service, including
spreadsheet import and normalization, customer persistence, the assignment
workflow that binds accounts to collection agents, and the HTTP API that
exposes them.
"""
