"""Setup script for the CoinGate Merchant Bridge."""

from setuptools import setup, find_packages

setup(
    name="coingate-merchant",
    version="0.1.0",
    description="CoinGate cryptocurrency payment bridge: order initiation and callback reconciliation",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.9",
    packages=find_packages(include=["coingate_merchant", "coingate_merchant.*"]),
    install_requires=[
        "pydantic>=2.6.0",
        "pydantic-settings>=2.1.0",
        "httpx>=0.25.0",
        "tenacity>=8.2.3",
        "structlog>=23.2.0",
        "python-json-logger>=2.0.7",
        "prometheus-client>=0.19.0",
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
        "python-multipart>=0.0.6",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "coingate-merchant=coingate_merchant.api.main:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
