"""Setup script for webops-buildpacks."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="webops-buildpacks",
    version="0.1.0",
    author="WebOps Team",
    author_email="support@webops.dev",
    description="Layer lifecycle engine for WebOps container image buildpacks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/dagiim/webops",
    packages=find_packages(include=["webops_buildpacks", "webops_buildpacks.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.11",
    install_requires=[
        "click>=8.1.0",
        "requests>=2.31.0",
        "rich>=13.0.0",
        "packaging>=23.0",
        "tomlkit>=0.12.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "webops-buildpacks=webops_buildpacks.cli:main",
        ],
    },
)
