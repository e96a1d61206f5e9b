from setuptools import setup

setup(
    name='PsychWGCNA',  # the name of your package
    packages=['PsychWGCNA'],  # same as above
    version='0.1.0',  # version number
    license='MIT',  # license type
    description='PsychWGCNA runs weighted correlation network analysis (WGCNA) on bulk RNA-seq counts and relates '
                'module eigengenes to clinical covariates',
    # short description
    keywords=['WGCNA', 'bulk', 'RNA-seq', 'gene clustering', 'network analysis', 'psychiatric genomics'],
    install_requires=[  # these can also include >, <, == to enforce version compatibility
        'pandas>=2.1.0',
        'numpy>=1.24.0',
        'scipy>=1.9.1',
        'scikit-learn>=1.2.2',
        'statsmodels>=0.14.0',
        'patsy>=0.5.3',
        'matplotlib>=3.5.2',
        'seaborn>=0.12.0',
        'anndata>=0.8.0',
        'pydeseq2>=0.5.0',
        'psutil>=5.9.0',
        'biomart>=0.9.2',
        'gseapy>=1.0.1',
        'setuptools>=67.4.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    classifiers=[  # choose from here: https://pypi.org/classifiers/
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research ',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.10',
    ],
)
