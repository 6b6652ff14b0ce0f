import os

import pytest

from schemupload.common.exceptions import ValidationError, PayloadTooLargeError
from schemupload.protocol.http.multipart import (
    MultipartStreamProcessor, get_boundary, parse_content_disposition, STAGING_PREFIX, STAGING_SUFFIX, DEFAULT_FILE_MODE,
)
from schemupload.test.helpers import multipart_body


async def feed(processor, body, chunk_size):
    for i in range(0, len(body), chunk_size):
        await processor.process_chunk(body[i:i + chunk_size])


def test_get_boundary():
    assert get_boundary('multipart/form-data; boundary=abc') == b'abc'
    assert get_boundary('multipart/form-data; boundary="a b"; charset=utf-8') == b'a b'
    assert get_boundary('Multipart/Form-Data; BOUNDARY=xyz') == b'xyz'
    assert get_boundary('application/json') is None
    assert get_boundary('multipart/form-data') is None
    assert get_boundary(None) is None


def test_parse_content_disposition():
    params = parse_content_disposition('form-data; name="file"; filename="my \\"castle\\".schem"')
    assert params == {'name': 'file', 'filename': 'my "castle".schem'}

    params = parse_content_disposition("form-data; name=file; filename=\"fallback.schem\"; filename*=UTF-8''v%C3%A1r.schem")
    assert params['filename'] == 'vár.schem'


@pytest.mark.asyncio
@pytest.mark.parametrize('chunk_size', [1, 7, 64, 100000])
async def test_stream_file_and_fields(tmp_path, chunk_size):
    content = os.urandom(5000) + b'\r\n--not-a-boundary\r\n' + os.urandom(100)
    content_type, body = multipart_body('castle.schem', content, fields={'token': 'player-1'})
    boundary = get_boundary(content_type)
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024 * 1024)
    await feed(processor, body, chunk_size)

    part = await processor.finalize()
    assert part.filename == 'castle.schem'
    assert part.size == len(content)
    assert os.path.basename(part.staging_path).startswith(STAGING_PREFIX)
    assert part.staging_path.endswith(STAGING_SUFFIX)
    with open(part.staging_path, 'rb') as f:
        assert f.read() == content
    assert processor.fields == {'token': 'player-1'}

    await processor.cleanup()
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_filename_is_validated_before_staging(tmp_path):
    def reject(name):
        raise ValidationError('Invalid file name')

    content_type, body = multipart_body('../evil.schem', b'data')
    boundary = get_boundary(content_type)
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024, validate_filename=reject)
    with pytest.raises(ValidationError):
        await feed(processor, body, 1024)
    await processor.cleanup()
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_file_too_large(tmp_path):
    content_type, body = multipart_body('big.schem', b'x' * 2048)
    boundary = get_boundary(content_type)
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    with pytest.raises(PayloadTooLargeError):
        await feed(processor, body, 256)
    await processor.cleanup()
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_second_file_is_rejected(tmp_path):
    content_type, first = multipart_body('a.schem', b'a')
    boundary = get_boundary(content_type)
    body = first.replace(b'--' + boundary + b'--\r\n', b'')
    body += b'--' + boundary + b'\r\nContent-Disposition: form-data; name="file2"; filename="b.schem"\r\n\r\nb\r\n'
    body += b'--' + boundary + b'--\r\n'
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    with pytest.raises(ValidationError):
        await feed(processor, body, 4096)
    await processor.cleanup()


@pytest.mark.asyncio
async def test_truncated_body(tmp_path):
    content_type, body = multipart_body('a.schem', b'abc')
    boundary = get_boundary(content_type)
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    await feed(processor, body[:-10], 4096)
    with pytest.raises(ValidationError):
        await processor.finalize()
    await processor.cleanup()
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_no_file_part(tmp_path):
    boundary = b'xyz'
    body = b'--xyz\r\nContent-Disposition: form-data; name="token"\r\n\r\nabc\r\n--xyz--\r\n'
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    await feed(processor, body, 4096)
    with pytest.raises(ValidationError) as exc:
        await processor.finalize()
    assert exc.value.message == 'No file was uploaded'
    assert processor.fields == {'token': 'abc'}


@pytest.mark.asyncio
async def test_empty_file_input_is_ignored(tmp_path):
    boundary = b'xyz'
    body = (
        b'--xyz\r\nContent-Disposition: form-data; name="other"; filename=""\r\n\r\n\r\n'
        b'--xyz\r\nContent-Disposition: form-data; name="file"; filename="a.schem"\r\n\r\nabc\r\n'
        b'--xyz--\r\n'
    )
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    await feed(processor, body, 3)
    part = await processor.finalize()
    assert part.filename == 'a.schem'
    assert part.size == 3
    await processor.cleanup()


@pytest.mark.asyncio
async def test_staging_file_mode(tmp_path):
    content_type, body = multipart_body('a.schem', b'abc')
    boundary = get_boundary(content_type)
    processor = MultipartStreamProcessor(boundary, str(tmp_path), 1024)
    await feed(processor, body, 4096)
    part = await processor.finalize()
    assert os.stat(part.staging_path).st_mode & 0o777 == DEFAULT_FILE_MODE
    await processor.cleanup()
