"""
Shroud v1 Key Management

types          - KeyHierarchy, PublicKeys and lifecycle enums
serialization  - fixed 194-byte plaintext layout
store          - encrypted key records and key-value backends
manager        - KeyManager state machine and KeySession
"""
