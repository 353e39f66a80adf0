"""auth/ -- Sign-in core for SignGate: credential store, attempt limiter, tokens.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/config
for settings-driven constructors). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
