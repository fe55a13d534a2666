"""auth/ -- Accounts, authentication and one-time passwords for Autozonex.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or market/.
api/ and web/ import from auth/, not the other way around.
"""
