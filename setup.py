"""Package metadata for dirstore (src layout, console script `dirstore`)."""

from setuptools import find_packages, setup

setup(
    name="dirstore",
    version="0.1.0",
    description="Embedded filesystem-backed object store with two-way file sync",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.11",
    install_requires=[
        "click>=8.1",
        "rich>=13.0",
        "PyYAML>=6.0",
        "inotify_simple>=1.3; sys_platform == 'linux'",
    ],
    extras_require={
        "test": ["pytest>=8.0"],
    },
    entry_points={
        "console_scripts": ["dirstore = dirstore.cli:cli"],
    },
)
