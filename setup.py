from setuptools import setup, find_packages
import pathlib

here = pathlib.Path(__file__).parent.resolve()

VERSION = '0.1.0'
PACKAGE_NAME = 'vecchiagp'
AUTHOR = 'The vecchiagp developers'

LICENSE = 'MIT'
DESCRIPTION = 'Scalable Gaussian Process Inference for Spatial Data using the Vecchia Approximation'
LONG_DESCRIPTION = (here / 'README.md').read_text(encoding='utf-8')

INSTALL_REQUIRES = [
      'numpy>=1.18.2',
      'numba>=0.51.2',
      'tqdm>=4.50.2',
      'scipy>=1.4.1',
      'scikit-learn>=0.22.0',
      'dill>=0.3.2',
      'psutil>=5.8.0',
      'tabulate>=0.8.7'
]

setup(name=PACKAGE_NAME,
      version=VERSION,
      description=DESCRIPTION,
      long_description=LONG_DESCRIPTION,
      long_description_content_type='text/markdown',
      author=AUTHOR,
      license=LICENSE,
      keywords = ["gaussian process","vecchia approximation","spatial statistics","kriging"],
      install_requires=INSTALL_REQUIRES,
      python_requires='>=3.7, <4',
      extras_require={'test': ['pytest']},
      packages=find_packages(include=['vecchiagp', 'vecchiagp.*'])
      )
