import os
import shutil
import tempfile
from importlib import resources

from schemupload import logger
from schemupload._version import __version__
from schemupload.common.exceptions import ProvisionError
from schemupload.protocol.http.multipart import STAGING_PREFIX, STAGING_SUFFIX

WEB_DIRECTORY = 'web'
VERSION_FILE = 'version.txt'
STAGING_DIRECTORY = '.temp'


class StorageLayout:
	def __init__(self, artifact_dir:str, web_dir:str, download_dir:str, staging_dir:str, version_file:str, staging_ready:bool = True, first_run:bool = False):
		self.artifact_dir = artifact_dir
		self.web_dir = web_dir
		self.download_dir = download_dir
		self.staging_dir = staging_dir
		self.version_file = version_file
		self.staging_ready = staging_ready
		self.first_run = first_run

	def __str__(self):
		t = '==== StorageLayout ====\r\n'
		for k in self.__dict__:
			t += '%s: %s\r\n' % (k, self.__dict__[k])
		return t


def bundled_assets():
	return resources.files('schemupload.web').joinpath('assets')

def extract_assets(target_dir:str, source = None):
	"""Copies the bundled asset tree into target_dir"""
	if source is None:
		source = bundled_assets()
	for entry in source.iterdir():
		if entry.name.startswith('__') or entry.name.endswith('.pyc'):
			continue
		destination = os.path.join(target_dir, entry.name)
		if entry.is_dir():
			os.makedirs(destination, exist_ok=True)
			extract_assets(destination, entry)
			continue
		with entry.open('rb') as src, open(destination, 'wb') as dst:
			shutil.copyfileobj(src, dst)

def clear_files(directory:str):
	"""Deletes every file below directory, the directory structure itself stays"""
	removed = 0
	for root, _, files in os.walk(directory):
		for filename in files:
			os.unlink(os.path.join(root, filename))
			removed += 1
	return removed

def _create_web_directory(data_root:str, web_dir:str, version:str, source = None):
	# populate a scratch directory first so a failed extraction never leaves a web dir behind
	scratch = tempfile.mkdtemp(prefix='.web-', dir=data_root)
	try:
		extract_assets(scratch, source)
		with open(os.path.join(scratch, VERSION_FILE), 'w', encoding='utf-8') as f:
			f.write(version)
		os.chmod(scratch, 0o755)
		os.rename(scratch, web_dir)
	except BaseException:
		shutil.rmtree(scratch, ignore_errors=True)
		if os.path.isdir(web_dir):
			# another process won the race, its copy is as good as ours
			logger.debug('Web directory appeared while provisioning %s' % web_dir)
			return False
		raise
	return True

def provision(data_root:str, artifact_dir:str, download_subdir:str = 'download', version:str = __version__, source = None) -> StorageLayout:
	"""
	Prepares the directories the web service needs. Safe to call on every start,
	bundled assets are only extracted when the web directory does not exist yet.
	"""
	data_root = os.path.abspath(data_root)
	artifact_dir = os.path.abspath(artifact_dir)
	web_dir = os.path.join(data_root, WEB_DIRECTORY)
	first_run = False

	if not os.path.exists(web_dir):
		logger.info('Generating files for the webserver...')
		try:
			os.makedirs(data_root, exist_ok=True)
			first_run = _create_web_directory(data_root, web_dir, version, source)
		except OSError as e:
			raise ProvisionError('Failed to create web directory %s' % web_dir, e)
	elif not os.path.isdir(web_dir):
		raise ProvisionError('Web path %s exists but is not a directory' % web_dir)

	download_dir = os.path.join(web_dir, download_subdir)
	try:
		os.makedirs(download_dir, exist_ok=True)
		removed = clear_files(download_dir)
		if removed > 0:
			logger.info('Removed %s stale file(s) from %s' % (removed, download_dir))
	except OSError as e:
		raise ProvisionError('Failed to clear download directory %s' % download_dir, e)

	try:
		os.makedirs(artifact_dir, exist_ok=True)
	except OSError as e:
		raise ProvisionError('Failed to create artifact directory %s' % artifact_dir, e)
	for directory in [web_dir, artifact_dir]:
		if not os.access(directory, os.W_OK | os.X_OK):
			raise ProvisionError('Directory %s is not writable' % directory)

	staging_dir = os.path.join(artifact_dir, STAGING_DIRECTORY)
	staging_ready = True
	try:
		if not os.path.isdir(staging_dir):
			os.makedirs(staging_dir)
			logger.info('Prepared temporary upload folder for the webserver...')
		for filename in os.listdir(staging_dir):
			if filename.startswith(STAGING_PREFIX) and filename.endswith(STAGING_SUFFIX):
				os.unlink(os.path.join(staging_dir, filename))
	except OSError as e:
		# uploads will fail one by one instead
		logger.warning('Failed to prepare upload staging directory %s: %s' % (staging_dir, e))
		staging_ready = False

	return StorageLayout(
		artifact_dir,
		web_dir,
		download_dir,
		staging_dir,
		os.path.join(web_dir, VERSION_FILE),
		staging_ready = staging_ready,
		first_run = first_run,
	)
