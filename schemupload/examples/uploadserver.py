import sys
import time
import logging

from schemupload import logger
from schemupload._version import __banner__
from schemupload.common.config import ServiceConfig, MAX_FILE_SIZE, MAX_REQUEST_SIZE
from schemupload.web.service import UploadService


def print_upload(name, size, token):
    print('Received schematic %s (%s bytes) token: %s' % (name, size, token))


def main():
    """
    Runs the schematic web service standalone, the way a host would embed it.
    """
    import argparse

    parser = argparse.ArgumentParser(
        description='Schematic upload and download web service',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s ./data ./schematics                       # Serve on 0.0.0.0:8080
  %(prog)s ./data ./schematics --port 9000           # Use custom port
  %(prog)s --url "http://127.0.0.1:8080/?data=./data&artifacts=./schematics&ext=.schem"
        ''')
    parser.add_argument('data_root', nargs='?', help='Data root, the web directory is created below it')
    parser.add_argument('artifact_dir', nargs='?', help='Directory uploaded schematics are stored in')
    parser.add_argument('--url', help='Service URL, overrides every other option. Use --url-help for the format')
    parser.add_argument('--url-help', action='store_true', help='Print the service URL format')
    parser.add_argument('--host', '-H', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', '-p', type=int, default=8080, help='Port to bind to (default: 8080)')
    parser.add_argument('--max-file-size', type=int, default=MAX_FILE_SIZE, help='Maximum size of one uploaded file in bytes')
    parser.add_argument('--max-request-size', type=int, default=MAX_REQUEST_SIZE, help='Maximum size of one upload request in bytes')
    parser.add_argument('--allowed-extensions', help='Comma separated list of allowed extensions (e.g. ".schem,.litematic")')
    parser.add_argument('--workers', type=int, default=32, help='Maximum number of requests processed at the same time')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable debug logging')
    parser.add_argument('-s', '--silent', action='store_true', help='dont print banner')

    args = parser.parse_args()

    if args.url_help is True:
        print(ServiceConfig.get_help())
        return

    if args.silent is False:
        print(__banner__)

    if args.debug is True:
        logger.setLevel(logging.DEBUG)

    try:
        if args.url is not None:
            config, _ = ServiceConfig.from_url(args.url)
        else:
            if args.data_root is None or args.artifact_dir is None:
                parser.error('data_root and artifact_dir are required when --url is not used')
            allowed_extensions = None
            if args.allowed_extensions:
                allowed_extensions = [ext.strip() for ext in args.allowed_extensions.split(',') if ext.strip()]
            config = ServiceConfig(
                args.data_root,
                args.artifact_dir,
                port = args.port,
                host = args.host,
                max_file_size = args.max_file_size,
                max_request_size = args.max_request_size,
                allowed_extensions = allowed_extensions,
                max_workers = args.workers,
            )
    except ValueError as e:
        print('Error: %s' % e)
        sys.exit(1)

    if args.debug is True:
        print(config)

    service = UploadService(config, on_upload = print_upload)
    service.start()
    port, err = service.wait_started()
    if err is not None:
        print('Failed to start server: %s' % err)
        service.stop()
        sys.exit(1)

    print('Upload page: http://%s:%s/upload' % (config.host, port))
    print('List page: http://%s:%s/list' % (config.host, port))
    try:
        while service.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print('\nServer stopped by user')
    finally:
        service.stop()


if __name__ == '__main__':
    main()
