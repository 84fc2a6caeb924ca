import os, sys
from setuptools import setup, find_packages
from setuptools.command.build_py import build_py as _build

CLASSIFIERS = [
    'Operating System :: POSIX',
    'Operating System :: MacOS :: MacOS X',
    'Intended Audience :: Science/Research',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Scientific/Engineering'
]

PKGDIR = os.path.dirname(os.path.abspath(__file__))
PYDIR = os.path.join(PKGDIR, 'python')

def get_version():
    out = "dev"
    versfile = os.path.join(os.environ.get('PACKAGE_DIR', PKGDIR), 'VERSION')
    if os.path.exists(versfile):
        with open(versfile) as fd:
            parts = fd.readline().split()
        if len(parts) > 0:
            out = parts[-1]
    else:
        out = "(unknown)"
    return out

def write_version_mod(version):
    versmodf = os.path.join(PYDIR, "passdeposit", "version.py")
    with open(versmodf, 'w') as fd:
        fd.write('"""')
        fd.write("""
An identification of the system version.  Note that this module file gets 
(over-) written by the build process.  
""")
        fd.write('"""\n\n')
        fd.write('__version__ = "')
        fd.write(version)
        fd.write('"\n')

class build(_build):

    def run(self):
        write_version_mod(get_version())
        _build.run(self)

setup(name='passdeposit',
      version=get_version(),
      description="passdeposit: packaging and transmission of submissions to external repositories",
      packages=find_packages(where='python', include=['passdeposit', 'passdeposit.*']),
      package_dir={'': 'python'},
      python_requires='>=3.8',
      install_requires=[ 'requests', 'urllib3', 'PyYAML', 'lxml' ],
      extras_require={ 'test': [ 'pytest' ] },
      cmdclass={'build_py': build},
      classifiers=CLASSIFIERS,
      zip_safe=False
)
