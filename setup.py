from setuptools import setup, find_packages

setup(
    name='tc_library_exporter',
    version='0.1.0',
    description='Build TwinCAT PLC projects through the automation interface and export them as libraries',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.10',
    install_requires=[
        'lxml>=4.9.0',
        'pywin32>=306; sys_platform == "win32"',
        'comtypes>=1.2.0; sys_platform == "win32"',
    ],
    extras_require={
        'dev': ['pytest>=7.0', 'mcp[cli]>=1.2.0,<2'],
        'mcp': ['mcp[cli]>=1.2.0,<2'],
    },
    entry_points={
        'console_scripts': [
            'tc-library-export=tc_library_exporter.cli:main',
            'tc-library-mcp=tc_library_exporter.mcp_server:main',
        ],
    },
)
