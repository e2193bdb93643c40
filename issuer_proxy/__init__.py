"""Issuer Proxy - certificate issuance over pluggable certificate authorities.

Issues X.509 certificates for a proxying service by delegating to a
Vault PKI secrets engine, a CFSSL signing server or AWS Private CA, while
keeping the backend session authorized for the lifetime of the process.
"""

__version__ = "0.1.0"
