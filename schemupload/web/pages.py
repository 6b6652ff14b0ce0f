import os

from schemupload import logger
from schemupload.protocol.http.httpserver import HTTPServerHandler

PAGES = {
    '/list' : 'list.html',
    '/list/' : 'list.html',
    '/upload' : 'upload.html',
    '/upload/' : 'upload.html',
}


class PageRoutingHandler(HTTPServerHandler):
    """Maps the human facing paths to their HTML page in the web directory"""

    def __init__(self, web_dir:str):
        super().__init__()
        self.web_dir = web_dir

    async def do_GET(self, event):
        html_file = PAGES.get(self.path)
        if html_file is None:
            return await self.serve_error(404, "Not found")

        html_path = os.path.join(self.web_dir, html_file)
        if not os.path.isfile(html_path):
            return await self.serve_error(404, "Page not found")

        try:
            body = await self.run_blocking(self._read_page, html_path)
        except OSError:
            logger.exception('Failed to serve page: %s' % html_file)
            return await self.serve_error(500, "Internal server error")

        await self.send_response(200, body, 'text/html; charset=UTF-8')

    async def do_HEAD(self, event):
        await self.do_GET(event)

    @staticmethod
    def _read_page(html_path:str) -> bytes:
        with open(html_path, 'rb') as f:
            return f.read()
