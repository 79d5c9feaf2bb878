"""
iRefair
Referral matching between job applicants and corporate referrers.

Architecture:
- Relational database (PostgreSQL, SQLite locally): applicants, referrers, companies, applications, matches
- MongoDB: uploaded resume files
- Redis: fixed-window rate limiting
"""

__version__ = "1.0.0"
