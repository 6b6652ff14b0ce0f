from schemupload.common.extensions import AllowedExtensions
from schemupload.common.exceptions import ValidationError

MAX_NAME_LENGTH = 255


def validate_artifact_name(name:str, allowed_extensions:AllowedExtensions) -> str:
	"""
	Checks a client supplied file name before it touches the artifact directory.
	Both the upload and the download path go through here.
	"""
	if name is None or name == '' or len(name) > MAX_NAME_LENGTH:
		raise ValidationError('Invalid file name')
	if '..' in name or '/' in name or '\\' in name or '\x00' in name:
		raise ValidationError('Invalid file name')
	if name.startswith('.'):
		raise ValidationError('Invalid file name')
	if not allowed_extensions.matches(name):
		raise ValidationError('Invalid file type')
	return name
