import setuptools

VERSION = '0.1.0'

setup_params = dict(
    name='callmibro-offline',
    version=VERSION,
    author='CallMiBro',
    url='https://github.com/callmibro/callmibro-offline',
    keywords='requests cache offline sync',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    package_dir={'callmibro_offline': 'callmibro_offline'},
    include_package_data=True,
    description='Offline request caching and background submission sync for CallMiBro clients',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=['requests>=2.28', 'python-dotenv>=1.0'],
    extras_require={
        'dev': {
            'mockito': '>=1.4',
            'pytest': '>=7.0',
            'pytest-cov': '>=4.0',
            'ddt': '>=1.6',
        }
    },
    entry_points={
        'console_scripts': [
            'callmibro-offline = callmibro_offline.cli:main',
        ],
    },
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
