import asyncio


class UniConnection:
	def __init__(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter, buffer_size:int = 65535):
		self.reader = reader
		self.writer = writer
		self.buffer_size = buffer_size
		self.closing = False

	def get_extra_info(self, name, default=None):
		if self.writer is None:
			return default
		return self.writer.get_extra_info(name, default)

	def get_peer(self):
		peer = self.get_extra_info('peername')
		if peer is None:
			return 'unknown'
		return '%s:%s' % (peer[0], peer[1])

	async def close(self):
		if self.closing is True:
			return
		self.closing = True
		if self.writer is not None:
			self.writer.close()
			try:
				await self.writer.wait_closed()
			except (ConnectionError, OSError):
				pass

	async def write(self, data):
		if self.closing is True:
			raise ConnectionError('Connection is closed')
		self.writer.write(data)
		await self.writer.drain()

	async def read_one(self):
		if self.closing is True:
			return b''
		return await self.reader.read(self.buffer_size)
