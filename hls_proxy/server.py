import logging

from flask import Flask, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .classifier import is_playlist, is_playlist_target
from .config import load_config
from .errors import ProxyError, UpstreamError
from .policy import RewritePolicy
from .responses import (
    error_response,
    passthrough_response,
    playlist_response,
    preflight_response,
    set_cors_headers,
)
from .rewriter import rewrite_playlist
from .target import resolve_target
from .upstream import build_headers, encode_text, fetch, read_text

logger = logging.getLogger(__name__)

PROXY_METHODS = ['GET', 'HEAD', 'POST', 'OPTIONS']


def create_app(config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)

    # validates the policy settings
    RewritePolicy.from_config(app.config)

    if app.config['PROXY_TRUST_FORWARDED']:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1, x_prefix=1)

    @app.before_request
    def before_request():
        if request.method == 'OPTIONS':
            return preflight_response()

    @app.after_request
    def add_headers(response):
        return set_cors_headers(response)

    @app.errorhandler(ProxyError)
    def handle_proxy_error(error):
        return error_response(str(error), error.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return error_response(f"{error.code} {error.name}: {error.description}", error.code)

    @app.route('/health')
    def health():
        return 'ok'

    @app.route('/', methods=PROXY_METHODS)
    @app.route('/proxy', methods=PROXY_METHODS)
    @app.route('/proxy.m3u8', methods=PROXY_METHODS)
    def proxy():
        policy = RewritePolicy.from_config(app.config)
        target, proxy_base = resolve_target(request, policy)
        playlist_target = is_playlist_target(target, policy)

        headers = build_headers(
            request.headers,
            target,
            user_agent=app.config['PROXY_USER_AGENT'],
            send_origin=app.config['PROXY_SEND_ORIGIN'],
            playlist_target=playlist_target,
        )
        body = request.get_data() if request.method == 'POST' else None
        upstream = fetch(request.method, target, headers, body=body,
                         timeout=app.config['PROXY_TIMEOUT'])

        final_url = upstream.url or target
        content_type = upstream.headers.get('Content-Type', '')
        if not is_playlist(content_type, policy, target, final_url):
            logger.info("%s %s -> %s (passthrough)", request.method, target, upstream.status_code)
            return passthrough_response(upstream, final_url, policy,
                                        cache_control=app.config['PROXY_SEGMENT_CACHE_CONTROL'])

        try:
            if not 200 <= upstream.status_code < 300:
                logger.warning("Upstream returned %s for playlist %s", upstream.status_code, target)
                raise UpstreamError(upstream.status_code, upstream.reason, target)
            text, encoding = read_text(upstream, target)
        finally:
            upstream.close()

        # relative references resolve against wherever the redirects ended up
        rewritten = rewrite_playlist(text, final_url, proxy_base, policy)
        logger.info("%s %s -> %s (playlist rewritten)", request.method, target, upstream.status_code)
        return playlist_response(encode_text(rewritten, encoding), upstream.status_code, charset=encoding)

    return app


app = create_app()


def main():
    config = load_config()
    logging.basicConfig(
        level=config['LOG_LEVEL'],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    app.run(host=config['HOST'], port=config['PORT'])


if __name__ == '__main__':
    main()
