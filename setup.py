from setuptools import setup, find_packages

setup(
    name="allocation_buddy",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pandas",
        "numpy",
        "openpyxl",
        "pytest",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-dependency",
        ],
    },
    entry_points={
        "console_scripts": [
            "allocate=allocation_buddy.allocate:main",
        ],
    },
    description="A tool for reconciling store allocation exports against an item and store dictionary",
    python_requires=">=3.8",
)
