"""auth/ -- Authentication and authorization package for Lalisure.

Two identity paths share one credential store: staff (email + password, signed
session cookie) and customers (hosted OIDC provider). The route gate and the
procedure-level role checks sit on top of both.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
