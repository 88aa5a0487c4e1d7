"""
Constants for elliptic curve cryptography.
"""

# SECP256K1 constants
# Order of the SECP256K1 elliptic curve (N value)
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Signatures with s above this value are normalized to N - s (low-S form)
SECP256K1_HALF_N = SECP256K1_N // 2

# Raw r||s signatures are two 32-byte big-endian integers
SECP256K1_COMPONENT_LENGTH = 32
