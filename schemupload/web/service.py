import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from schemupload import logger
from schemupload.common.config import ServiceConfig
from schemupload.common.exceptions import SchemUploadError, StartupError
from schemupload.protocol.http.httpserver import HTTPServer
from schemupload.protocol.http.routing import RouteTable
from schemupload.web.provisioner import provision, StorageLayout
from schemupload.web.upload import UploadHandler
from schemupload.web.listing import ArtifactListHandler
from schemupload.web.pages import PageRoutingHandler, PAGES
from schemupload.web.static import StaticAssetHandler


def build_routes(config:ServiceConfig, layout:StorageLayout, on_upload:Callable = None) -> RouteTable:
	routes = RouteTable()
	routes.add_exact('/api', lambda: UploadHandler(
		layout.artifact_dir,
		layout.staging_dir,
		config.allowed_extensions,
		config.max_file_size,
		config.max_request_size,
		read_timeout = config.read_timeout,
		on_upload = on_upload,
	), name = 'upload')
	routes.add_prefix('/api/list', lambda: ArtifactListHandler(layout.artifact_dir, config.allowed_extensions), name = 'list')
	for page in PAGES:
		routes.add_exact(page, lambda: PageRoutingHandler(layout.web_dir), name = 'pages')
	routes.add_catchall(lambda: StaticAssetHandler(layout.web_dir), name = 'static')
	return routes


class UploadService:
	"""
	Runs the web service on its own thread and event loop so the host is never blocked.

	on_upload is called as on_upload(stored_name, size, uploader_token) after a file
	was committed to the artifact directory. It can be a plain function (run on the
	worker pool) or a coroutine function. A dict it returns is merged into the
	upload response.
	"""
	def __init__(self, config:ServiceConfig, on_upload:Callable = None, log_callback = None):
		self.config = config
		self.on_upload = on_upload
		self.log_callback = log_callback

		self.layout:StorageLayout = None
		self.port:int = None
		self.startup_error:Exception = None
		self.started_evt = threading.Event()

		self.__thread:threading.Thread = None
		self.__loop:asyncio.AbstractEventLoop = None
		self.__stop_evt:asyncio.Event = None
		self.__stop_requested = threading.Event()
		self.__lock = threading.Lock()

	def __enter__(self):
		self.start()
		_, err = self.wait_started()
		if err is not None:
			self.stop()
			raise err
		return self

	def __exit__(self, exc_type, exc, tb):
		self.stop()

	@property
	def is_running(self):
		return self.__thread is not None and self.__thread.is_alive() and self.port is not None

	def start(self):
		with self.__lock:
			if self.__thread is not None:
				return self
			self.__thread = threading.Thread(target=self.__run, name='schemupload-web', daemon=True)
			self.__thread.start()
		return self

	def wait_started(self, timeout:float = 10):
		"""Blocks until the listener is bound or startup failed. Returns (port, err)"""
		if self.started_evt.wait(timeout) is False:
			return None, StartupError('Web service did not start within %s seconds' % timeout)
		if self.startup_error is not None:
			return None, self.startup_error
		return self.port, None

	def __run(self):
		try:
			asyncio.run(self.__main())
		except Exception as e:
			if self.startup_error is None and self.port is None:
				self.startup_error = StartupError(innerexception=e)
			logger.exception('Internal webserver stopped unexpectedly')
		finally:
			self.started_evt.set()

	async def __startup(self) -> HTTPServer:
		loop = asyncio.get_running_loop()
		logger.info('Starting the internal webserver on port %s' % self.config.port)
		self.layout = await loop.run_in_executor(
			None,
			provision,
			self.config.data_root,
			self.config.artifact_dir,
			self.config.download_subdir,
		)
		routes = build_routes(self.config, self.layout, self.on_upload)
		server = HTTPServer(
			routes,
			self.config.to_target(),
			max_workers = self.config.max_workers,
			idle_timeout = self.config.idle_timeout,
			log_callback = self.log_callback,
		)
		port, err = await server.listen()
		if err is not None:
			raise StartupError('Failed to bind %s:%s' % (self.config.host, self.config.port), err)
		self.port = port
		return server

	async def __main(self):
		loop = asyncio.get_running_loop()
		executor = ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix='schemupload-worker')
		loop.set_default_executor(executor)
		self.__stop_evt = asyncio.Event()
		self.__loop = loop
		if self.__stop_requested.is_set():
			self.__stop_evt.set()

		try:
			server = await self.__startup()
		except Exception as e:
			self.startup_error = e if isinstance(e, SchemUploadError) else StartupError(innerexception=e)
			logger.exception('Failed to start the internal webserver.')
			return
		finally:
			self.started_evt.set()

		logger.info('Internal webserver listening on port %s' % self.port)
		serve_task = asyncio.create_task(server.serve())
		stop_task = asyncio.create_task(self.__stop_evt.wait())
		try:
			await asyncio.wait([serve_task, stop_task], return_when=asyncio.FIRST_COMPLETED)
			if serve_task.done() and not serve_task.cancelled() and serve_task.exception() is not None:
				logger.error('Internal webserver accept loop failed: %r' % serve_task.exception())
		finally:
			for task in [serve_task, stop_task]:
				task.cancel()
			await asyncio.gather(serve_task, stop_task, return_exceptions=True)
			await server.terminate()

	def stop(self, timeout:float = 10):
		"""Stops the service. Safe to call at any time, also when start never ran or failed"""
		thread = self.__thread
		if thread is None:
			logger.debug('Internal webserver was never started, nothing to stop')
			return
		logger.info('Shutting down the internal webserver.')
		self.__stop_requested.set()
		loop = self.__loop
		if loop is not None:
			try:
				loop.call_soon_threadsafe(self.__stop_evt.set)
			except RuntimeError:
				# loop already closed, the thread is on its way out
				pass
		if thread is not threading.current_thread():
			thread.join(timeout)
			if thread.is_alive():
				logger.error('Failed to gracefully shutdown the internal webserver within %s seconds' % timeout)
		self.port = None
