import os
import re
import tempfile
import urllib.parse
from typing import Callable, Dict, Optional

from schemupload import logger
from schemupload.common.exceptions import ValidationError, PayloadTooLargeError, StorageIOError

STAGING_PREFIX = 'upload-'
STAGING_SUFFIX = '.part'

disposition_param_re = re.compile(r';\s*([\w\*\-\.]+)\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')
boundary_re = re.compile(r'boundary=("(?:[^"\\]|\\.)*"|[^;]+)', re.IGNORECASE)


def _default_file_mode():
    # the umask can only be read by setting it, done once at import time
    mask = os.umask(0)
    os.umask(mask)
    return 0o666 & ~mask

# mkstemp creates 0600 files, committed schematics get the mode a plain open() would give
DEFAULT_FILE_MODE = _default_file_mode()


def get_boundary(content_type:str) -> Optional[bytes]:
    """Extracts the multipart boundary from a Content-Type header value"""
    if content_type is None or not content_type.lower().startswith('multipart/form-data'):
        return None
    match = boundary_re.search(content_type)
    if match is None:
        return None
    boundary = match.group(1).strip()
    if boundary.startswith('"'):
        boundary = boundary[1:-1]
    if boundary == '' or len(boundary) > 70:
        return None
    return boundary.encode('latin-1')

def parse_content_disposition(value:str) -> Dict[str, str]:
    params = {}
    for key, raw in disposition_param_re.findall(value):
        key = key.lower()
        raw = raw.strip()
        if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
            raw = re.sub(r'\\(.)', r'\1', raw[1:-1])
        if key.endswith('*'):
            # RFC 5987 extended value: charset'language'percent-encoded
            try:
                charset, _, encoded = raw.split("'", 2)
                raw = urllib.parse.unquote(encoded, encoding = charset or 'utf-8', errors = 'strict')
            except (ValueError, LookupError, UnicodeDecodeError):
                continue
        params[key] = raw

    # the extended form wins over the plain one
    for key in list(params.keys()):
        if key.endswith('*'):
            params[key[:-1]] = params.pop(key)
    return params


class MultipartPart:
    def __init__(self, name:str, filename:str = None, content_type:str = None):
        self.name = name
        self.filename = filename
        self.content_type = content_type
        self.size = 0
        self.value = b''
        self.staging_path = None

    @property
    def is_file(self):
        return self.filename is not None


class MultipartStreamProcessor:
    """
    Streaming multipart/form-data parser accepting a single file part.
    The file content is written to a staging file as it arrives, form fields are kept in memory.
    """

    def __init__(self, boundary:bytes, staging_dir:str, max_file_size:int, max_field_size:int = 64*1024,
                 max_header_size:int = 8192, validate_filename:Callable[[str], str] = None):
        self.delimiter = b'--' + boundary
        self.part_end = b'\r\n' + self.delimiter
        self.staging_dir = staging_dir
        self.max_file_size = max_file_size
        self.max_field_size = max_field_size
        self.max_header_size = max_header_size
        self.validate_filename = validate_filename

        # 'preamble', 'delimiter', 'headers', 'body', 'done'
        self.state = 'preamble'
        self.buffer = b''
        self.current_part:MultipartPart = None
        self.current_file_handle = None
        self.file_part:MultipartPart = None
        self.fields:Dict[str, str] = {}

    async def process_chunk(self, chunk:bytes):
        self.buffer += chunk
        while True:
            if self.state == 'preamble':
                pos = self.buffer.find(self.delimiter)
                if pos == -1:
                    # keep a potential partial delimiter
                    self.buffer = self.buffer[-len(self.delimiter):]
                    break
                self.buffer = self.buffer[pos + len(self.delimiter):]
                self.state = 'delimiter'

            elif self.state == 'delimiter':
                if len(self.buffer) < 2:
                    break
                if self.buffer.startswith(b'--'):
                    self.buffer = b''
                    self.state = 'done'
                    break
                if not self.buffer.startswith(b'\r\n'):
                    raise ValidationError('Malformed multipart body')
                self.buffer = self.buffer[2:]
                self.state = 'headers'

            elif self.state == 'headers':
                header_end = self.buffer.find(b'\r\n\r\n')
                if header_end == -1:
                    if len(self.buffer) > self.max_header_size:
                        raise ValidationError('Multipart headers too long')
                    break
                if header_end > self.max_header_size:
                    raise ValidationError('Multipart headers too long')
                header_section = self.buffer[:header_end]
                self.buffer = self.buffer[header_end + 4:]
                await self._start_part(header_section)
                self.state = 'body'

            elif self.state == 'body':
                pos = self.buffer.find(self.part_end)
                if pos == -1:
                    # keep enough data to detect a delimiter split across chunks
                    keep = len(self.part_end) - 1
                    if len(self.buffer) > keep:
                        await self._write_part_data(self.buffer[:-keep])
                        self.buffer = self.buffer[-keep:]
                    break
                await self._write_part_data(self.buffer[:pos])
                self.buffer = self.buffer[pos + len(self.part_end):]
                await self._finalize_current_part()
                self.state = 'delimiter'

            else:
                # epilogue is ignored
                self.buffer = b''
                break

    async def _start_part(self, header_section:bytes):
        try:
            headers_text = header_section.decode('utf-8', errors='strict')
        except UnicodeDecodeError as e:
            raise ValidationError('Invalid multipart header encoding', e)

        disposition = None
        content_type = None
        for line in headers_text.split('\r\n'):
            hname, sep, hvalue = line.partition(':')
            if sep == '':
                continue
            hname = hname.strip().lower()
            if hname == 'content-disposition':
                disposition = hvalue.strip()
            elif hname == 'content-type':
                content_type = hvalue.strip()

        if disposition is None or not disposition.lower().startswith('form-data'):
            raise ValidationError('Missing form-data Content-Disposition in multipart part')

        params = parse_content_disposition(disposition)
        part = MultipartPart(params.get('name', ''), params.get('filename'), content_type)

        if part.is_file and part.filename == '':
            # empty file input, browsers still send the part
            part.filename = None
            part.name = None

        if part.is_file:
            if self.file_part is not None:
                raise ValidationError('Only one file can be uploaded per request')
            if self.validate_filename is not None:
                self.validate_filename(part.filename)
            try:
                fd, staging_path = tempfile.mkstemp(prefix=STAGING_PREFIX, suffix=STAGING_SUFFIX, dir=self.staging_dir)
            except OSError as e:
                raise StorageIOError('Upload staging directory is not available', e)
            part.staging_path = staging_path
            self.current_file_handle = os.fdopen(fd, 'wb')
            self.file_part = part
            try:
                os.fchmod(fd, DEFAULT_FILE_MODE)
            except OSError as e:
                raise StorageIOError('Failed to prepare the upload staging file', e)
            logger.debug('Staging upload "%s" to %s' % (part.filename, staging_path))

        self.current_part = part

    async def _write_part_data(self, data:bytes):
        if self.current_part is None or len(data) == 0:
            return
        part = self.current_part
        if part.is_file:
            if part.size + len(data) > self.max_file_size:
                raise PayloadTooLargeError('File exceeds the maximum size of %s bytes' % self.max_file_size)
            try:
                self.current_file_handle.write(data)
            except OSError as e:
                raise StorageIOError('Error writing upload data', e)
            part.size += len(data)
        elif part.name is not None:
            if part.size + len(data) > self.max_field_size:
                raise ValidationError('Form field "%s" is too large' % part.name)
            part.value += data
            part.size += len(data)

    async def _finalize_current_part(self):
        part = self.current_part
        self.current_part = None
        if part is None:
            return
        if part.is_file:
            try:
                self.current_file_handle.flush()
                os.fsync(self.current_file_handle.fileno())
                self.current_file_handle.close()
            except OSError as e:
                raise StorageIOError('Error writing upload data', e)
            finally:
                self.current_file_handle = None
        elif part.name is not None:
            self.fields[part.name] = part.value.decode('utf-8', errors='replace')

    async def finalize(self) -> MultipartPart:
        """Called once the request body ended. Returns the staged file part"""
        if self.state != 'done':
            raise ValidationError('Malformed multipart body, closing boundary missing')
        if self.file_part is None:
            raise ValidationError('No file was uploaded')
        return self.file_part

    async def cleanup(self):
        """Removes the staging file, whatever state the upload reached"""
        if self.current_file_handle is not None:
            try:
                self.current_file_handle.close()
            except OSError:
                pass
            self.current_file_handle = None

        if self.file_part is not None and self.file_part.staging_path is not None:
            try:
                os.unlink(self.file_part.staging_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning('Failed to remove staging file %s: %s' % (self.file_part.staging_path, e))
            self.file_part.staging_path = None
