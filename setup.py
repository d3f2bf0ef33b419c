from setuptools import setup, find_packages

if __name__ == '__main__':
    setup(
        name='looptree',
        version='0.1',
        install_requires=[
            'ruamel.yaml',
            'pydantic>=2.0.0',
            'jinja2',
            'islpy-barvinok',
        ],
        extras_require={
            'test': ['pytest'],
        },
        packages=find_packages(include=['looptree', 'looptree.*']),
        zip_safe=True,
        entry_points={
            'console_scripts': []
        }
    )
