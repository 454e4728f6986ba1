"""Authentication module (username/password + JWT).

Services:
    - AuthService: registration, login, token issuance and verification.
    - get_current_identity: FastAPI dependency for bearer-token routes.
"""
