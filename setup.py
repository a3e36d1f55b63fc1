"""
Shroud v1 Setup
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="shroud",
    version="1.0.0",
    author="Shroud Team",
    description="Stealth payment key engine: deterministic key derivation, encrypted key storage and payment scanning",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "coincurve>=18.0.0",
        "pycryptodome>=3.19.0",
        "cryptography>=41.0.0",
        "argon2-cffi>=23.1.0",
        "httpx>=0.25.0",
        "zxcvbn>=4.4.28",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-timeout>=2.2.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
    ],
    keywords="stealth-address secp256k1 ecdh hkdf argon2 payments",
)
