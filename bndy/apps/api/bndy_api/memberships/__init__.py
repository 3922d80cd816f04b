"""Membership boundary: artist groups and per-group profile resolution.

Independent of authentication: only the route layer connects the two, by
passing in the user id from a validated session.
"""
