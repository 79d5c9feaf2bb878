"""
Services module - data access, mail, resume storage and external APIs.
"""
