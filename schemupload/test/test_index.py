import os

from schemupload.common.extensions import AllowedExtensions
from schemupload.web.index import list_artifacts, encode_name, decode_name, ArtifactEntry

ALLOWED = AllowedExtensions(['.schem', '.litematic'])


def write(path, size):
    with open(path, 'wb') as f:
        f.write(b'x' * size)


def test_encode_name():
    assert encode_name('castle.schem') == 'castle.schem'
    assert encode_name('my castle.schem') == 'my+castle.schem'
    assert encode_name('a/b&c.schem') == 'a%2Fb%26c.schem'
    assert encode_name('vár.schem') == 'v%C3%A1r.schem'


def test_decode_name():
    assert decode_name('my+castle.schem') == 'my castle.schem'
    assert decode_name('v%C3%A1r.schem') == 'vár.schem'
    assert decode_name(encode_name('100% + more.schem')) == '100% + more.schem'


def test_entry_to_dict():
    entry = ArtifactEntry('my castle.schem', 12)
    assert entry.to_dict() == {'name': 'my castle.schem', 'size': 12, 'encodedName': 'my+castle.schem'}


def test_missing_directory(tmp_path):
    assert list_artifacts(str(tmp_path / 'missing'), ALLOWED) == []


def test_listing_filters_and_sorts(tmp_path):
    write(tmp_path / 'b.schem', 3)
    write(tmp_path / 'A.litematic', 1)
    write(tmp_path / 'c.schem', 0)
    write(tmp_path / 'notes.txt', 5)
    write(tmp_path / '.hidden.schem', 5)
    os.makedirs(tmp_path / 'folder.schem')
    os.makedirs(tmp_path / '.temp')
    write(tmp_path / '.temp' / 'upload-1.part', 5)

    entries = list_artifacts(str(tmp_path), ALLOWED)
    assert entries == [
        ArtifactEntry('A.litematic', 1),
        ArtifactEntry('b.schem', 3),
        ArtifactEntry('c.schem', 0),
    ]


def test_case_only_differences_keep_scan_order(tmp_path):
    for name in ['b.schem', 'B.schem', 'a.schem']:
        write(tmp_path / name, 1)
    with os.scandir(tmp_path) as it:
        scan_order = [entry.name for entry in it]

    names = [entry.name for entry in list_artifacts(str(tmp_path), ALLOWED)]
    assert names == ['a.schem'] + [name for name in scan_order if name.lower() == 'b.schem']


def test_listing_is_repeatable(tmp_path):
    for name in ['b.schem', 'B.schem', 'c.litematic', 'A.schem']:
        write(tmp_path / name, len(name))

    first = list_artifacts(str(tmp_path), ALLOWED)
    second = list_artifacts(str(tmp_path), ALLOWED)
    assert first == second
    assert [entry.name for entry in first] == [entry.name for entry in second]
