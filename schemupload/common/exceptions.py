
class SchemUploadError(Exception):
	"""Base error, carries the HTTP status the request handlers answer with"""
	status_code = 500

	def __init__(self, message="Internal server error", innerexception = None):
		self.message = message
		self.innerexception = innerexception
		super().__init__(self.message)

class ValidationError(SchemUploadError):
	status_code = 400

class NotFoundError(SchemUploadError):
	status_code = 404

class ConflictError(SchemUploadError):
	status_code = 409

class PayloadTooLargeError(SchemUploadError):
	status_code = 413

class StorageIOError(SchemUploadError):
	status_code = 500

class ProvisionError(SchemUploadError):
	def __init__(self, message="Failed to prepare the storage layout! See innerexception for more details", innerexception = None):
		super().__init__(message, innerexception)

class StartupError(SchemUploadError):
	def __init__(self, message="Failed to start the web service! See innerexception for more details", innerexception = None):
		super().__init__(message, innerexception)
