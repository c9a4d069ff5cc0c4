"""Setup configuration for StakeScope."""

from setuptools import find_packages, setup

setup(
    name="stakescope",
    version="0.3.0",
    description="Solana validator telemetry — ingestion, scoring and reconciliation pipeline",
    author="AETHERVEIL",
    python_requires=">=3.11",
    packages=find_packages(where="src", include=["stakescope*"]),
    package_dir={"": "src"},
    install_requires=[
        "httpx>=0.27.0",
        "pandas>=2.2.0",
        "pydantic>=2.6.0",
        "pydantic-settings>=2.1.0",
        "pyarrow>=15.0.0",
        "SQLAlchemy>=2.0.0",
        "python-dotenv>=1.0.0",
    ],
    entry_points={
        "console_scripts": [
            "stakescope=stakescope.cli:cli_entry",
        ],
    },
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "respx>=0.21.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
    },
)
