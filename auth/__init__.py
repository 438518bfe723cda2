"""auth/ -- Authentication policy core for Credential Guard.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ (for
settings). It does NOT import from main.py. Entry points import from auth/,
not the other way around.
"""
