import os
import urllib.parse
from typing import List

from schemupload.common.extensions import AllowedExtensions


def encode_name(name:str) -> str:
	return urllib.parse.quote_plus(name, safe='', encoding='utf-8')

def decode_name(encoded:str) -> str:
	return urllib.parse.unquote_plus(encoded, encoding='utf-8', errors='strict')


class ArtifactEntry:
	__slots__ = ('name', 'size')

	def __init__(self, name:str, size:int):
		self.name = name
		self.size = size

	@property
	def encoded_name(self):
		return encode_name(self.name)

	def to_dict(self):
		return {
			'name' : self.name,
			'size' : self.size,
			'encodedName' : self.encoded_name,
		}

	def __eq__(self, other):
		if not isinstance(other, ArtifactEntry):
			return NotImplemented
		return self.name == other.name and self.size == other.size

	def __repr__(self):
		return 'ArtifactEntry(%r, %s)' % (self.name, self.size)


def list_artifacts(artifact_dir:str, allowed_extensions:AllowedExtensions) -> List[ArtifactEntry]:
	"""
	Lists the stored artifacts sorted case-insensitively by name.
	A missing artifact directory gives an empty list. Files removed while the
	directory is being scanned are skipped.
	"""
	entries = []
	if not os.path.isdir(artifact_dir):
		return entries

	with os.scandir(artifact_dir) as it:
		for direntry in it:
			name = direntry.name
			if name.startswith('.') or not allowed_extensions.matches(name):
				continue
			try:
				if not direntry.is_file(follow_symlinks=True):
					continue
				size = direntry.stat(follow_symlinks=True).st_size
			except FileNotFoundError:
				continue
			entries.append(ArtifactEntry(name, size))

	# list.sort is stable, names equal when case folded keep the scan order
	entries.sort(key=lambda e: e.name.lower())
	return entries
