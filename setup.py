"""
Setup configuration for the Maintenance Trigger & Predictive Analytics Engine
Enables the project to be installed as a Python package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8') if (this_directory / "README.md").exists() else ""

# Core dependencies
core_requirements = [
    'numpy>=1.24.0',
    'pandas>=2.0.0',
    'pyyaml>=6.0.0',
    'python-dotenv>=1.0.0',
    'sqlalchemy>=2.0.0',
    'schedule>=1.2.0',
    'colorlog>=6.7.0',
    'python-dateutil>=2.8.2',
]

# Optional dependencies for different components
extras_require = {
    'api': [
        'flask>=2.3.0',
    ],
    'database': [
        'psycopg2-binary>=2.9.0',
    ],
    'dev': [
        'pytest>=7.4.0',
        'pytest-cov>=4.1.0',
        'flask>=2.3.0',
    ],
}

# All extras combined
extras_require['all'] = sorted(set(sum(extras_require.values(), [])))

# Package metadata
setup(
    name='maintenance-trigger-engine',
    version='1.0.0',
    author='Maintenance Analytics Team',
    description='Preventive maintenance triggers, compliance tracking and predictive asset analytics',
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='MIT',

    # Package discovery
    packages=find_packages(include=['src', 'src.*', 'config']),

    # Include non-Python files
    include_package_data=True,
    package_data={
        'config': ['*.yaml', '*.yml'],
    },

    # Python version requirement
    python_requires='>=3.9',

    # Dependencies
    install_requires=core_requirements,
    extras_require=extras_require,

    # Entry points for CLI commands
    entry_points={
        'console_scripts': [
            'maintenance-engine=src.main:main',
        ],
    },

    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: System :: Monitoring',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Environment :: Web Environment',
    ],

    keywords='preventive-maintenance predictive-maintenance cmms anomaly-detection weibull',

    # Don't install as zip file
    zip_safe=False,
)
