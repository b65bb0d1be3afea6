from setuptools import setup, find_packages

setup(
    name="alpn-probe",
    version="0.1.0",
    description="Single-connection TLS diagnostic that checks HTTP/2 is negotiated via ALPN",
    python_requires=">=3.8",
    packages=find_packages(),
    install_requires=[
        "pyopenssl>=25.0.0",
        "cryptography>=42.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "alpn-probe = alpn_probe.cli:main",
        ]
    }
)
