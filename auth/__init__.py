"""auth/ -- Authentication, sessions, and object retrieval for Gatehouse.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/ or storage/.
api/ and storage/ import from auth/, not the other way around.
"""
