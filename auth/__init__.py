"""auth/ -- Wallet authentication and admin authorization for Base App.

Layer rule: auth/ imports from core/ and cache/ plus third-party libraries.
auth/dependencies.py is the FastAPI seam and the only module that may touch
fastapi or audit/. api/ and main.py import from auth/, not the other way around.
"""
