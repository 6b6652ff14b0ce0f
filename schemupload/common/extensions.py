from typing import Iterable

DEFAULT_EXTENSIONS = ('.schem', '.schematic', '.litematic')


class AllowedExtensions:
	"""
	Immutable set of filename suffixes accepted for upload and exposed for listing/download.
	One instance is built from the configuration and shared by every handler.
	"""
	__slots__ = ('_extensions',)

	def __init__(self, extensions:Iterable[str] = DEFAULT_EXTENSIONS):
		normalized = set()
		for ext in extensions:
			ext = ext.strip()
			if ext == '':
				continue
			if not ext.startswith('.'):
				ext = '.' + ext
			normalized.add(ext)
		if len(normalized) == 0:
			raise ValueError('At least one allowed extension must be configured!')
		object.__setattr__(self, '_extensions', frozenset(normalized))

	def __setattr__(self, name, value):
		raise AttributeError('AllowedExtensions is immutable')

	def matches(self, filename:str) -> bool:
		return any(filename.endswith(ext) for ext in self._extensions)

	def __contains__(self, ext):
		return ext in self._extensions

	def __iter__(self):
		return iter(sorted(self._extensions))

	def __len__(self):
		return len(self._extensions)

	def __eq__(self, other):
		if not isinstance(other, AllowedExtensions):
			return NotImplemented
		return self._extensions == other._extensions

	def __hash__(self):
		return hash(self._extensions)

	def __repr__(self):
		return 'AllowedExtensions(%s)' % ', '.join(self)
