"""
Utilities - uploads, URL/email validation and timezone helpers.
"""
