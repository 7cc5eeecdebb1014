#!/usr/bin/env python3
"""
Setup script for ilpmoja.
A bridge between Interledger (ILPv4) connectors and Mojaloop FSPIOP switches.
"""

"""
Copyright (c) 2025 Firefly Software Solutions Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at:

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from setuptools import setup, find_packages
import os

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()


def get_version():
    """Read the version from ilpmoja/__init__.py without importing it."""
    version_file = os.path.join(this_directory, 'ilpmoja', '__init__.py')
    with open(version_file, encoding='utf-8') as f:
        for line in f:
            if line.startswith('__version__'):
                return line.split('=')[1].strip(' "\'\n')
    return '0.1.0'


setup(
    name='ilpmoja',
    version=get_version(),
    author='Firefly OSS',
    author_email='dev@getfirefly.io',
    description='Interledger to Mojaloop FSPIOP bridge - ILP plugin over HTTP',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Topic :: Office/Business :: Financial',
        'Framework :: AsyncIO',
    ],
    python_requires='>=3.9',
    install_requires=[
        'pydantic>=2.0.0',
        'PyYAML>=6.0',
        'toml>=0.10.2',
        'dataclasses-json>=0.6.0',
        'fastapi>=0.100.0',
        'uvicorn>=0.23.0',
        'httpx>=0.24.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-asyncio>=0.21.0',
            'pytest-cov>=4.0.0',
            'pytest-mock>=3.10.0',
            'pytest-xdist>=3.0.0',
            'black>=22.0.0',
            'ruff>=0.1.0',
            'mypy>=1.0.0',
            'isort>=5.12.0',
            'pre-commit>=3.0.0',
        ],
        'test': [
            'pytest>=7.0.0',
            'pytest-asyncio>=0.21.0',
            'pytest-mock>=3.10.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'ilpmoja=ilpmoja.cli:main',
        ],
    },
    zip_safe=False,
)
