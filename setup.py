"""Setup script for the Person Group Resolver package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="persongroup-resolver",
    version="0.1.0",
    description="Assigns person photos to stable person groups from appearance descriptions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Person Group Resolver Team",
    packages=find_packages(include=["persongroup*", "scripts"]),
    python_requires=">=3.9",
    install_requires=[
        "openai>=1.30.0",
        "pillow>=10.3.0",
        "pandas>=2.2.0",
        "pyarrow>=15.0.0",  # Parquet export
        "pyyaml>=6.0.0",
        "python-dotenv>=1.0.0",
        "tqdm>=4.66.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "persongroup-ingest=scripts.ingest_capture:main",
            "persongroup-resolve=scripts.resolve_capture:main",
            "persongroup-refresh=scripts.refresh_descriptions:main",
            "persongroup-neighbors=scripts.group_neighbors:main",
            "persongroup-export=scripts.export_groups:main",
            "persongroup-status=scripts.db_status:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
