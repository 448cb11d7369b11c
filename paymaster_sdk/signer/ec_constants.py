"""
Constants for elliptic curve cryptography.
"""

# Order of the SECP256K1 elliptic curve (N value)
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Upper bound for the s value of a non-malleable signature (EIP-2)
SECP256K1_HALF_N = 0x7FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF5D576E7357A4501DDFE92F46681B20A0

# Recovery ids accepted by ecrecover
VALID_V_VALUES = (27, 28)
