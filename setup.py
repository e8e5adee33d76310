"""Setup script for File Copier."""

from setuptools import setup, find_packages

setup(
    name="file-copier",
    version="1.0.0",
    description="Background service that mirrors new files from a watched folder to a destination",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    author="File Copier contributors",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "watchdog>=5.0.0",
        "Babel>=2.12",
    ],
    extras_require={
        "windows": [
            "pywin32>=306",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "file-copier=file_copier.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: No Input/Output (Daemon)",
        "Environment :: Win32 (MS Windows)",
        "Intended Audience :: System Administrators",
        "Operating System :: MacOS :: MacOS X",
        "Operating System :: Microsoft :: Windows",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Topic :: System :: Archiving :: Mirroring",
    ],
)
