import os

import h11

from schemupload import logger
from schemupload.common.extensions import AllowedExtensions
from schemupload.common.exceptions import NotFoundError, ValidationError, StorageIOError
from schemupload.protocol.http.httpserver import JSONAPIHandler
from schemupload.web.index import list_artifacts, encode_name, decode_name
from schemupload.web.names import validate_artifact_name

DOWNLOAD_PREFIX = '/download/'


class ArtifactListHandler(JSONAPIHandler):
    """Serves the artifact list and single artifact downloads below /api/list"""

    def __init__(self, artifact_dir:str, allowed_extensions:AllowedExtensions, chunk_size:int = 512*1024):
        super().__init__()
        self.artifact_dir = artifact_dir
        self.allowed_extensions = allowed_extensions
        self.chunk_size = chunk_size

    async def do_GET(self, event):
        path_info = self.path_info
        if path_info in [None, '', '/', '/list']:
            return await self.handle_list()
        if path_info.startswith(DOWNLOAD_PREFIX):
            return await self.handle_download(path_info[len(DOWNLOAD_PREFIX):])
        raise NotFoundError('Not found')

    async def handle_list(self):
        try:
            entries = await self.run_blocking(list_artifacts, self.artifact_dir, self.allowed_extensions)
        except OSError:
            logger.exception('Failed to list schematics in %s' % self.artifact_dir)
            raise StorageIOError('Failed to list schematics')
        await self.send_json(200, [entry.to_dict() for entry in entries])

    def _resolve(self, encoded_name:str):
        try:
            name = decode_name(encoded_name)
        except UnicodeDecodeError:
            raise ValidationError('Invalid file name')
        validate_artifact_name(name, self.allowed_extensions)
        return name, os.path.join(self.artifact_dir, name)

    async def handle_download(self, encoded_name:str):
        name, file_path = self._resolve(encoded_name)
        if not os.path.isfile(file_path):
            raise NotFoundError('File not found')

        try:
            f = open(file_path, 'rb')
        except FileNotFoundError:
            raise NotFoundError('File not found')
        except OSError as e:
            logger.exception('Failed to open schematic %s' % file_path)
            raise StorageIOError('Failed to download schematic', e)

        with f:
            file_size = os.fstat(f.fileno()).st_size
            headers = self.basic_headers()
            headers.extend([
                ("Content-Type", b"application/octet-stream"),
                ("Content-Length", str(file_size).encode("ascii")),
                ("Content-Disposition", ('attachment; filename="%s"' % encode_name(name)).encode("ascii")),
            ])
            await self._wrapper.send(h11.Response(status_code=200, headers=headers))

            # headers are out, a failure from here on can only abort the connection
            bytes_remaining = file_size
            while bytes_remaining > 0:
                chunk = await self.run_blocking(f.read, min(self.chunk_size, bytes_remaining))
                if not chunk:
                    break
                await self._wrapper.send(h11.Data(data=chunk))
                bytes_remaining -= len(chunk)

            if bytes_remaining > 0:
                raise ConnectionError('Schematic %s shrank while it was being sent' % name)
            await self._wrapper.send(h11.EndOfMessage())
        logger.debug('Sent schematic %s (%s bytes)' % (name, file_size))
