import pytest

from schemupload.common.config import ServiceConfig
from schemupload.web.service import UploadService
from schemupload.test.helpers import TEST_MAX_FILE_SIZE, TEST_MAX_REQUEST_SIZE


@pytest.fixture
def service_config(tmp_path):
    return ServiceConfig(
        str(tmp_path / 'data'),
        str(tmp_path / 'schematics'),
        port=0,
        host='127.0.0.1',
        max_file_size=TEST_MAX_FILE_SIZE,
        max_request_size=TEST_MAX_REQUEST_SIZE,
        max_workers=8,
    )


@pytest.fixture
def uploads():
    """Records every host callback invocation"""
    return []


@pytest.fixture
def service(service_config, uploads):
    def on_upload(name, size, token):
        uploads.append((name, size, token))
        return {'uploader': token}

    with UploadService(service_config, on_upload=on_upload) as svc:
        yield svc
