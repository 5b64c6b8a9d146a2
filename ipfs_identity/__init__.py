"""HTTP identity service storing bcrypt-hashed user accounts on an IPFS node."""

__version__ = "0.1.0"
__all__ = ["__version__"]