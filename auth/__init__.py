"""auth/ -- Authentication and authorization package for VulnWatch.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/, inventory/, or sync/.
api/ imports from auth/, not the other way around.
"""
