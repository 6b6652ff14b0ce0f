import ipaddress


class UniTarget:
	"""Address the listening socket binds to. Port 0 asks the OS for a free port"""
	def __init__(self, host:str, port:int):
		if host is None or host == '':
			raise ValueError('Listen host must be set')
		if port is None or port < 0 or port > 65535:
			raise ValueError('Port must be between 0 and 65535, got %s' % port)

		self.port = port
		self.ip = None
		self.hostname = None
		try:
			self.ip = str(ipaddress.ip_address(host))
		except ValueError:
			self.hostname = host

	def get_ip_or_hostname(self):
		if self.ip is not None:
			return self.ip
		return self.hostname

	def __str__(self):
		return '%s:%s' % (self.get_ip_or_hostname(), self.port)
