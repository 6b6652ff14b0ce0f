import pytest

from schemupload.protocol.http.routing import RouteTable, RouteKind


def make_table():
    table = RouteTable()
    table.add_exact('/api', lambda: 'upload', name='upload')
    table.add_prefix('/api/list', lambda: 'list', name='list')
    table.add_exact('/list', lambda: 'pages', name='pages')
    table.add_catchall(lambda: 'static', name='static')
    return table


@pytest.mark.parametrize('path, name, path_info', [
    ('/api', 'upload', '/api'),
    ('/api/list', 'list', ''),
    ('/api/list/', 'list', '/'),
    ('/api/list/list', 'list', '/list'),
    ('/api/list/download/a.schem', 'list', '/download/a.schem'),
    ('/api/listing', 'static', '/api/listing'),
    ('/api/', 'static', '/api/'),
    ('/list', 'pages', '/list'),
    ('/list/', 'static', '/list/'),
    ('/style.css', 'static', '/style.css'),
    ('/', 'static', '/'),
])
def test_resolve(path, name, path_info):
    route, info = make_table().resolve(path)
    assert route.name == name
    assert info == path_info


def test_first_match_wins():
    table = RouteTable()
    table.add_prefix('/api', lambda: 'first', name='first')
    table.add_prefix('/api/list', lambda: 'second', name='second')
    route, _ = table.resolve('/api/list')
    assert route.name == 'first'


def test_no_route():
    table = RouteTable().add_exact('/api', lambda: None)
    assert table.resolve('/other') == (None, None)


def test_single_catchall():
    table = RouteTable().add_catchall(lambda: None)
    with pytest.raises(ValueError):
        table.add_catchall(lambda: None)
    assert [route.kind for route in table] == [RouteKind.CATCHALL]
