"""Setup configuration for pollsource package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = (
    readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""
)

setup(
    name="pollsource",
    version="1.0.0",
    description="Polling SQL source operator that emits one tuple per row for windowed stream pipelines",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Tony Sebion",
    packages=find_packages(exclude=["tests", "tests.*", "docs", "docs.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pyodbc>=4.0.0",  # Default driver for ODBC stores
        "python-dotenv>=1.0.0",  # For .env loading
        "pydantic>=2.0.0",  # For config validation
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        "tenacity>=8.0.0",  # For restart backoff
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=0.990",
        ],
    },
    entry_points={
        "console_scripts": [
            "pollsource=pollsource.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="data-engineering streaming sql polling source-operator dbapi checkpoint",
)
