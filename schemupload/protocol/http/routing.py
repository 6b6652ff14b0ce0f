import enum
from typing import Callable, List, Tuple


class RouteKind(enum.Enum):
    EXACT = 1
    PREFIX = 2
    CATCHALL = 3


class Route:
    def __init__(self, kind:RouteKind, path:str, handler_factory:Callable, name:str = None):
        self.kind = kind
        self.path = path.rstrip('/') if kind == RouteKind.PREFIX else path
        self.handler_factory = handler_factory
        self.name = name or path

    def match(self, path:str):
        """
        Returns the path info left over after the route prefix, or None if the route does not apply.
        Exact and catch-all routes hand over the full path.
        """
        if self.kind == RouteKind.EXACT:
            if path == self.path:
                return path
            return None
        if self.kind == RouteKind.PREFIX:
            if path == self.path:
                return ''
            if path.startswith(self.path + '/'):
                return path[len(self.path):]
            return None
        return path

    def __repr__(self):
        return 'Route(%s, %r, %s)' % (self.kind.name, self.path, self.name)


class RouteTable:
    """
    Ordered route table. Routes are tested in registration order and the first match wins,
    so specific routes have to be added before the catch-all.
    """
    def __init__(self):
        self.routes:List[Route] = []

    def add_exact(self, path:str, handler_factory:Callable, name:str = None):
        self.routes.append(Route(RouteKind.EXACT, path, handler_factory, name))
        return self

    def add_prefix(self, path:str, handler_factory:Callable, name:str = None):
        self.routes.append(Route(RouteKind.PREFIX, path, handler_factory, name))
        return self

    def add_catchall(self, handler_factory:Callable, name:str = 'default'):
        if any(route.kind == RouteKind.CATCHALL for route in self.routes):
            raise ValueError('Only one catch-all route can be registered')
        self.routes.append(Route(RouteKind.CATCHALL, '/', handler_factory, name))
        return self

    def resolve(self, path:str) -> Tuple[Route, str]:
        for route in self.routes:
            path_info = route.match(path)
            if path_info is not None:
                return route, path_info
        return None, None

    def __iter__(self):
        return iter(self.routes)

    def __len__(self):
        return len(self.routes)
