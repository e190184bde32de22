from setuptools import setup, find_packages

setup(
    name="square-number-dss",
    version="0.1.0",
    packages=find_packages(include=["dss_core", "dss_core.*"]),
    install_requires=[
        # EVM chain access and signing
        "web3>=7.0.0",
        "eth-account>=0.13.0",
        "eth-abi>=4.0.0",
        "eth-utils>=2.0.0",
        "hexbytes>=0.3.0",
        # BN254 pairing curve for BLS aggregation
        "py-ecc>=6.0.0",
        # HTTP clients and web framework
        "httpx>=0.24.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        # Data validation and configuration
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        # CLI and UI
        "click>=8.1.3",
        "rich>=13.0.0",
        # Logging
        "coloredlogs>=15.0.0",
        # System monitoring
        "prometheus_client>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dsscore=dss_core.cli.main:main",
        ],
    },
    description="Off-chain task aggregator and operator node for a square-number DSS",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
)
