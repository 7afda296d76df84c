import os
from setuptools import setup, find_packages

import cloudgraph


def read(file_name: str) -> str:
    with open(os.path.join(os.path.dirname(__file__), file_name)) as of:
        return of.read()


setup(
    name=cloudgraph.__title__,
    version=cloudgraph.__version__,
    description=cloudgraph.__description__,
    license=cloudgraph.__license__,
    packages=find_packages(exclude=["test", "test.*"]),
    long_description=read("README.md"),
    long_description_content_type="text/markdown",
    include_package_data=True,
    zip_safe=False,
    install_requires=read("requirements.txt").splitlines(),
    extras_require={"test": read("requirements-test.txt").splitlines()},
    entry_points={"console_scripts": ["cloudgraph-aws = cloudgraph_aws.__main__:main"]},
    classifiers=[
        # Current project status
        "Development Status :: 4 - Beta",
        # Audience
        "Intended Audience :: System Administrators",
        "Intended Audience :: Information Technology",
        # License information
        "License :: OSI Approved :: Apache Software License",
        # Supported python versions
        "Programming Language :: Python :: 3.9",
        # Supported OS's
        "Operating System :: POSIX :: Linux",
        "Operating System :: Unix",
        # Extra metadata
        "Environment :: Console",
        "Natural Language :: English",
        "Topic :: Utilities",
    ],
    keywords="cloud aws graph",
)
