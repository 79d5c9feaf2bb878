"""
Core module - configuration, authentication, tokens and rate limiting.
"""
