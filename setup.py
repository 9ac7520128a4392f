"""Setup configuration for Vertector Couchbase Cache."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="vertector-couchbase-cache",
    version="1.0.0",
    description="Batch cache adapter backed by Couchbase collections with per-key failure reporting",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Vertector Team",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv",
        "opentelemetry-api>=1.20.0",
        "opentelemetry-sdk>=1.20.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ],
        "couchbase": [
            # 3.2.7 is the release checked to turn timedeltas over 30 days into
            # absolute timestamps (couchbase.options.timedelta_as_timestamp)
            "couchbase>=3.2.7,<4.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
)
