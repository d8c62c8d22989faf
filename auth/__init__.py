"""auth/ -- Authentication and authorization core for MediaVault.

OTP verification, access/refresh token issuance, the ownership/visibility
evaluator, and the flows that compose them.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or media/.
api/ imports from auth/, not the other way around.
"""
