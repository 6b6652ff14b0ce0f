import os
import errno
import shutil
import asyncio
from typing import Callable

import h11

from schemupload import logger
from schemupload.common.extensions import AllowedExtensions
from schemupload.common.exceptions import ValidationError, ConflictError, PayloadTooLargeError, StorageIOError
from schemupload.protocol.http.httpserver import JSONAPIHandler
from schemupload.protocol.http.multipart import MultipartStreamProcessor, get_boundary
from schemupload.web.names import validate_artifact_name

# errors meaning the filesystem has no hard links, the copy fallback is used instead
NO_LINK_ERRNOS = {errno.EPERM, errno.EXDEV, errno.EMLINK, getattr(errno, 'ENOTSUP', -1), getattr(errno, 'EOPNOTSUPP', -1)}


def commit_upload(staging_path:str, final_path:str):
    """
    Publishes a staged upload under its final name. Creation is exclusive, an
    existing artifact is never replaced. Until this returns the artifact does not exist.
    """
    try:
        os.link(staging_path, final_path)
        return
    except FileExistsError:
        raise ConflictError('File already exists')
    except OSError as e:
        if e.errno not in NO_LINK_ERRNOS:
            raise StorageIOError('Failed to store the uploaded file', e)

    try:
        target = open(final_path, 'xb')
    except FileExistsError:
        raise ConflictError('File already exists')
    except OSError as e:
        raise StorageIOError('Failed to store the uploaded file', e)

    try:
        with target, open(staging_path, 'rb') as source:
            shutil.copyfileobj(source, target, 1024*1024)
            target.flush()
            os.fsync(target.fileno())
    except BaseException as e:
        try:
            os.unlink(final_path)
        except OSError:
            pass
        if isinstance(e, OSError):
            raise StorageIOError('Failed to store the uploaded file', e)
        raise


class UploadHandler(JSONAPIHandler):
    """
    Accepts a multipart/form-data POST carrying one schematic file.

    The body is streamed into a staging file, the name is validated as soon as the
    part headers arrive, and the staged file is committed into the artifact
    directory only after the whole body was received.
    """

    def __init__(self, artifact_dir:str, staging_dir:str, allowed_extensions:AllowedExtensions,
                 max_file_size:int, max_request_size:int, read_timeout:int = 30, on_upload:Callable = None):
        super().__init__()
        self.artifact_dir = artifact_dir
        self.staging_dir = staging_dir
        self.allowed_extensions = allowed_extensions
        self.max_file_size = max_file_size
        self.max_request_size = max_request_size
        self.read_timeout = read_timeout
        self.on_upload = on_upload

    def _validate_filename(self, filename:str):
        return validate_artifact_name(filename, self.allowed_extensions)

    def _check_declared_length(self):
        content_length = self.get_header('content-length')
        if content_length is None:
            return
        try:
            content_length = int(content_length)
        except ValueError:
            raise ValidationError('Invalid Content-Length header')
        if content_length > self.max_request_size:
            raise PayloadTooLargeError('Upload too large: %s bytes (max: %s)' % (content_length, self.max_request_size))

    async def _read_body_chunk(self):
        try:
            event = await self._wrapper.next_event(timeout = self.read_timeout)
        except asyncio.TimeoutError:
            raise ConnectionError('Upload timeout - connection too slow')
        if isinstance(event, h11.Data):
            return event.data
        if isinstance(event, h11.EndOfMessage):
            return None
        raise ConnectionError('Client disconnected during upload')

    async def do_POST(self, event):
        boundary = get_boundary(self.get_header('content-type'))
        if boundary is None:
            raise ValidationError('Only multipart/form-data uploads are supported')
        self._check_declared_length()

        processor = MultipartStreamProcessor(
            boundary,
            self.staging_dir,
            self.max_file_size,
            validate_filename = self._validate_filename,
        )
        try:
            received = 0
            while True:
                chunk = await self._read_body_chunk()
                if chunk is None:
                    break
                received += len(chunk)
                if received > self.max_request_size:
                    raise PayloadTooLargeError('Upload too large (max: %s bytes)' % self.max_request_size)
                await processor.process_chunk(chunk)

            part = await processor.finalize()
            name = part.filename
            size = part.size
            await self.run_blocking(commit_upload, part.staging_path, os.path.join(self.artifact_dir, name))
        finally:
            await processor.cleanup()

        token = processor.fields.get('token')
        if token is None and 'token' in self.query:
            token = self.query['token'][0]
        logger.info('Stored uploaded schematic %s (%s bytes) from %s' % (name, size, self._wrapper.stream.get_peer()))

        payload = {}
        extra = await self._notify_host(name, size, token)
        if isinstance(extra, dict):
            payload.update(extra)
        payload['name'] = name
        payload['size'] = size
        await self.send_json(200, payload)

    async def _notify_host(self, name:str, size:int, token:str):
        if self.on_upload is None:
            return None
        try:
            if asyncio.iscoroutinefunction(self.on_upload):
                return await self.on_upload(name, size, token)
            return await self.run_blocking(self.on_upload, name, size, token)
        except Exception:
            # the artifact is already stored, the uploader still gets a success
            logger.exception('Upload callback failed for %s' % name)
            return None
