"""auth/ -- Credential provider, password hashing, and FastAPI dependencies for kvauth.

Layer rule: auth/ imports from core/ and store/, never from api/.
api/ imports from auth/, not the other way around.
"""
