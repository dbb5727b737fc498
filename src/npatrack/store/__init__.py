"""Data store package for npatrack.

This package holds the SQL schema and the store classes that persist owners,
customer records, their location history, and field visits.
"""
