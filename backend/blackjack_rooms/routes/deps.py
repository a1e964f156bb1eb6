from fastapi.requests import HTTPConnection

from blackjack_rooms.services.gateway import ConnectionGateway


def get_gateway(connection: HTTPConnection) -> ConnectionGateway:
    """The application's gateway; overridden in tests with an isolated one."""
    return connection.app.state.gateway
