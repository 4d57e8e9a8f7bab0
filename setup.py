from setuptools import setup, find_packages

with open('requirements.txt') as f:
    requirements = f.read().splitlines()

setup(
    name='forney',
    version='0.1.0',
    description='Posterior factorization and message-passing schedules for Forney-style factor graphs',
    license='Apache License 2.0',
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    install_requires=requirements,
    extras_require={'test': ['parameterized', 'pytest']},
    python_requires='>=3.10',
)
