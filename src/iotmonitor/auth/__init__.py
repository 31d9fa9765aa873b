"""Authentication and authorization.

Learn: Two halves must agree before a request is trusted:
1. The JWT — signature and embedded expiry, checked without the database
2. The session row — must exist, be active, and not be past expires_at

Tokens alone can't be revoked; session rows can (logout).
"""
