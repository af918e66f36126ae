"""
Companies application.

A Company is the tenant boundary: every non-super-admin user and every
permission or module grant belongs to exactly one company.
"""
