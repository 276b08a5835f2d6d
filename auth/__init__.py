"""auth/ -- Session-token authentication core for sessionauth.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
Only auth/dependencies.py may import fastapi/starlette; everything else is
framework-free and usable from any host.
"""
