import asyncio

from schemupload import logger
from schemupload.common.target import UniTarget
from schemupload.common.connection import UniConnection


class UniServer:
	def __init__(self, target:UniTarget, buffer_size:int = 65535):
		self.target = target
		self.buffer_size = buffer_size
		self.connection_queue = asyncio.Queue()
		self.server:asyncio.AbstractServer = None
		self.bound_port = None

	async def __handle_connection(self, reader, writer):
		connection = UniConnection(reader, writer, self.buffer_size)
		await self.connection_queue.put(connection)

	async def listen(self):
		"""Binds the listening socket. Returns (port, err)"""
		try:
			self.server = await asyncio.start_server(
				self.__handle_connection,
				self.target.get_ip_or_hostname(),
				self.target.port
			)
			for sock in self.server.sockets:
				self.bound_port = sock.getsockname()[1]
				break
			logger.debug('Listening on %s:%s' % (self.target.get_ip_or_hostname(), self.bound_port))
			return self.bound_port, None
		except Exception as e:
			return None, e

	async def serve(self):
		if self.server is None:
			_, err = await self.listen()
			if err is not None:
				raise err
		try:
			while self.server.is_serving():
				connection = await self.connection_queue.get()
				yield connection
		finally:
			self.close()

	def close(self):
		if self.server is not None:
			self.server.close()
		# connections accepted but never picked up
		while not self.connection_queue.empty():
			connection = self.connection_queue.get_nowait()
			if connection.writer is not None:
				connection.writer.close()
