from aiohttp import web
from .responses import error_middleware
from .routes import MARKET, routes

# five proofs of up to 20MB plus form fields
MAX_REQUEST_SIZE = 110 * 1024 * 1024

def create_app(market) -> web.Application:
    """aiohttp application bound to a MarketplaceApp"""
    app = web.Application(middlewares=[error_middleware], client_max_size=MAX_REQUEST_SIZE)
    app[MARKET] = market
    app.add_routes(routes)
    return app
