from setuptools import setup, find_packages
import re

VERSIONFILE="schemupload/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))


setup(
	# Application name:
	name="schemupload",

	# Version number (initial):
	version=verstr,

	# Application author details:
	author="schemupload contributors",

	# Packages
	packages=find_packages(),

	# Include additional files into the package
	include_package_data=True,
	package_data={
		'schemupload.web': ['assets/*'],
	},


	# Details
	url="https://github.com/schemupload/schemupload",

	zip_safe = False,
	#
	# license="LICENSE.txt",
	description="Embedded HTTP service for uploading, listing and downloading schematic files",
	long_description="",

	python_requires='>=3.9',
	classifiers=[
		"Programming Language :: Python :: 3.9",
		"License :: OSI Approved :: MIT License",
		"Operating System :: OS Independent",
	],
	install_requires=[
		'h11>=0.14.0',
	],
	extras_require={
		'test': [
			'pytest>=7.0',
			'pytest-asyncio>=0.21',
		],
	},
	entry_points={
		'console_scripts': [
			'schemupload-server = schemupload.examples.uploadserver:main',
		],
	}
)
