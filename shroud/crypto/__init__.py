"""
Shroud v1 Cryptographic Primitives

curve    - secp256k1 keys, addresses and ECDH (coincurve)
hashing  - Keccak-256, HMAC-Keccak256, HKDF (pycryptodome)
aead     - AES-256-GCM and the persistence envelope (cryptography)
kdf      - Argon2id password hashing and the key hierarchy (argon2-cffi)
"""
