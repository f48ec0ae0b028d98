"""auth/ -- Session-cookie authentication core for SessionGate.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/ for
type checking. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
