import os
from typing import Callable, Dict
from urllib.parse import urlparse, parse_qs

from schemupload.common.target import UniTarget
from schemupload.common.extensions import AllowedExtensions, DEFAULT_EXTENSIONS
from schemupload.common.paramprocessor import str_one, int_one, list_one

MAX_FILE_SIZE = 20 * 1024 * 1024 # 20 MB
MAX_REQUEST_SIZE = 20 * 1024 * 1024 # 20 MB

serviceconfig_url_params = {
	'data' : str_one,
	'artifacts' : str_one,
	'maxfile' : int_one,
	'maxrequest' : int_one,
	'ext' : list_one,
	'workers' : int_one,
	'idle' : int_one,
	'readtimeout' : int_one,
	'downloaddir' : str_one,
}

class ServiceConfig:
	"""Settings the host hands to the web service"""
	def __init__(self, data_root:str, artifact_dir:str, port:int = 8080, host:str = '0.0.0.0', max_file_size:int = MAX_FILE_SIZE, max_request_size:int = MAX_REQUEST_SIZE, allowed_extensions = None, max_workers:int = 32, idle_timeout:int = 120, read_timeout:int = 30, download_subdir:str = 'download'):
		self.host = host
		self.port = port
		self.data_root = os.path.abspath(data_root)
		self.artifact_dir = os.path.abspath(artifact_dir)
		self.max_file_size = max_file_size
		self.max_request_size = max_request_size
		self.max_workers = max_workers
		self.idle_timeout = idle_timeout
		self.read_timeout = read_timeout
		self.download_subdir = download_subdir

		if allowed_extensions is None:
			allowed_extensions = DEFAULT_EXTENSIONS
		if not isinstance(allowed_extensions, AllowedExtensions):
			allowed_extensions = AllowedExtensions(allowed_extensions)
		self.allowed_extensions = allowed_extensions

		self.validate()

	def validate(self):
		if self.max_file_size < 1:
			raise ValueError('max_file_size must be positive, got %s' % self.max_file_size)
		if self.max_request_size < 1:
			raise ValueError('max_request_size must be positive, got %s' % self.max_request_size)
		if self.max_workers < 1:
			raise ValueError('max_workers must be at least 1, got %s' % self.max_workers)
		if self.idle_timeout <= 0 or self.read_timeout <= 0:
			raise ValueError('Timeouts must be positive')
		if self.download_subdir in ['', '.', '..'] or '/' in self.download_subdir or '\\' in self.download_subdir:
			raise ValueError('download_subdir must be a plain directory name, got %r' % self.download_subdir)

	def to_target(self) -> UniTarget:
		return UniTarget(self.host, self.port)

	@staticmethod
	def get_help():
		return 'Service URL format: http://<host>:<port>/?<params>\n' + \
			'Parameters -query params-:\n' + \
			'\tdata - str - data root, the "web" asset directory is created under it (required)\n' + \
			'\tartifacts - str - directory uploaded schematics are stored in (required)\n' + \
			'\tmaxfile - int - maximum size of a single uploaded file in bytes\n' + \
			'\tmaxrequest - int - maximum size of an upload request in bytes\n' + \
			'\text - str - comma separated list of allowed file extensions\n' + \
			'\tworkers - int - maximum number of requests processed at the same time\n' + \
			'\tidle - int - seconds an idle keep-alive connection is kept open\n' + \
			'\treadtimeout - int - seconds to wait for the next chunk of an upload body\n' + \
			'\tdownloaddir - str - name of the download staging folder inside the web directory\n'

	@staticmethod
	def from_url(service_url:str, extraparams:Dict[str, Callable] = {}):
		url_e = urlparse(service_url)
		if url_e.scheme not in ['http', '']:
			raise ValueError('Unsupported scheme "%s", only plain http is served' % url_e.scheme)

		params = dict.fromkeys(serviceconfig_url_params.keys(), None)
		extra = dict.fromkeys(extraparams.keys(), None)
		if url_e.query is not None:
			query = parse_qs(url_e.query)
			for k in query:
				if k in serviceconfig_url_params:
					params[k] = serviceconfig_url_params[k](query[k])
				if k in extraparams:
					extra[k] = extraparams[k](query[k])

		if params['data'] is None or params['artifacts'] is None:
			raise ValueError('Both "data" and "artifacts" parameters must be provided!')

		kwargs = {}
		if url_e.hostname is not None:
			kwargs['host'] = url_e.hostname
		if url_e.port is not None:
			kwargs['port'] = url_e.port
		for key, name in [('maxfile', 'max_file_size'), ('maxrequest', 'max_request_size'), ('ext', 'allowed_extensions'), ('workers', 'max_workers'), ('idle', 'idle_timeout'), ('readtimeout', 'read_timeout'), ('downloaddir', 'download_subdir')]:
			if params[key] is not None:
				kwargs[name] = params[key]

		return ServiceConfig(params['data'], params['artifacts'], **kwargs), extra

	def __str__(self):
		t = '==== ServiceConfig ====\r\n'
		for k in self.__dict__:
			t += '%s: %s\r\n' % (k, self.__dict__[k])
		return t
